"""
Configuración del motor de sincronización (SyncConfig).

SyncConfig es inmutable: cada componente recibe una instancia al
construirse y un ciclo en curso conserva la instancia tomada al inicio.
Los cambios producen una instancia nueva (`with_changes`) que el motor
intercambia de forma atómica.

Este módulo no realiza I/O: solo define configuración.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Mapping

from pos_sync.shared.constants.sync_constants import CONFIG_KEYS, ConflictPolicy
from pos_sync.shared.exceptions.sync import ValidationError


_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _parse_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ValidationError(f"Valor booleano inválido para {key}: {value!r}", field=key)


def _parse_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"Valor entero inválido para {key}: {value!r}", field=key)
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"Valor entero inválido para {key}: {value!r}", field=key)


@dataclass(frozen=True)
class SyncConfig:
    """
    Snapshot de configuración del motor.

    - remote_base_url: URL base del backend remoto (sin '/' final)
    - api_key: bearer token; vacío = modo degradado (solo local)
    - sync_interval_minutes: intervalo del scheduler (>= 1)
    - conflict_resolution_policy: local | remote | manual
    - retry_attempts: tope de reintentos automáticos antes de 'dead'
    """

    remote_base_url: str
    api_key: str = ""
    sync_interval_minutes: int = 30
    auto_sync_enabled: bool = True
    conflict_resolution_policy: ConflictPolicy = ConflictPolicy.LOCAL
    batch_size: int = 100
    retry_attempts: int = 3
    retry_delay_ms: int = 5000

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """
        Valida rangos y enums.

        Raises:
            ValidationError: Si algún valor está fuera de rango
        """
        if not self.remote_base_url:
            raise ValidationError("remote_base_url es obligatorio", field="remote_base_url")
        if self.sync_interval_minutes < 1:
            raise ValidationError("sync_interval_minutes debe ser >= 1", field="sync_interval_minutes")
        if self.batch_size < 1:
            raise ValidationError("batch_size debe ser >= 1", field="batch_size")
        if self.retry_attempts < 0:
            raise ValidationError("retry_attempts debe ser >= 0", field="retry_attempts")
        if self.retry_delay_ms < 0:
            raise ValidationError("retry_delay_ms debe ser >= 0", field="retry_delay_ms")
        if not isinstance(self.conflict_resolution_policy, ConflictPolicy):
            raise ValidationError(
                "conflict_resolution_policy inválida",
                field="conflict_resolution_policy",
            )

    @property
    def authenticated(self) -> bool:
        return bool(self.api_key)

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "SyncConfig":
        """
        Construye un SyncConfig desde valores crudos (texto de la tabla
        sync_config, JSON de la API o settings). Las claves desconocidas
        se ignoran.
        """
        kwargs: dict[str, Any] = {}
        for key in CONFIG_KEYS:
            if key not in values or values[key] is None:
                continue
            kwargs[key] = values[key]
        return cls(**_coerce(kwargs))

    @classmethod
    def from_settings(cls, settings) -> "SyncConfig":
        """Valores de arranque tomados de variables de entorno."""
        return cls.from_mapping({
            "remote_base_url": settings.REMOTE_BASE_URL,
            "api_key": settings.REMOTE_API_KEY,
            "sync_interval_minutes": settings.SYNC_INTERVAL_MINUTES,
            "auto_sync_enabled": settings.AUTO_SYNC_ENABLED,
            "conflict_resolution_policy": settings.CONFLICT_RESOLUTION_POLICY,
            "batch_size": settings.SYNC_BATCH_SIZE,
            "retry_attempts": settings.SYNC_RETRY_ATTEMPTS,
            "retry_delay_ms": settings.SYNC_RETRY_DELAY_MS,
        })

    def with_changes(self, **changes: Any) -> "SyncConfig":
        """
        Retorna una copia con los cambios aplicados (validada).

        Raises:
            ValidationError: Si hay claves desconocidas o valores inválidos
        """
        unknown = set(changes) - set(CONFIG_KEYS)
        if unknown:
            raise ValidationError(
                f"Claves de configuración desconocidas: {', '.join(sorted(unknown))}",
                field=sorted(unknown)[0],
            )
        clean = {k: v for k, v in changes.items() if v is not None}
        return dataclasses.replace(self, **_coerce(clean))

    def to_storage(self) -> dict[str, str]:
        """Valores serializados para la tabla sync_config."""
        return {
            key: (getattr(self, key).value if key == "conflict_resolution_policy" else str(getattr(self, key)))
            for key in CONFIG_KEYS
        }

    def to_public(self) -> dict[str, Any]:
        """Representación para la API (el token nunca se expone)."""
        return {
            "remote_base_url": self.remote_base_url,
            "api_key_configured": self.authenticated,
            "sync_interval_minutes": self.sync_interval_minutes,
            "auto_sync_enabled": self.auto_sync_enabled,
            "conflict_resolution_policy": self.conflict_resolution_policy.value,
            "batch_size": self.batch_size,
            "retry_attempts": self.retry_attempts,
            "retry_delay_ms": self.retry_delay_ms,
        }

    def schedule_changed(self, other: "SyncConfig") -> bool:
        """Indica si cambiar a `other` requiere reinstalar el timer."""
        return (
            self.sync_interval_minutes != other.sync_interval_minutes
            or self.auto_sync_enabled != other.auto_sync_enabled
        )

    def transport_changed(self, other: "SyncConfig") -> bool:
        """Indica si cambiar a `other` requiere reconstruir el cliente HTTP."""
        return self.remote_base_url != other.remote_base_url or self.api_key != other.api_key


def _coerce(values: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in values.items():
        if key in ("remote_base_url", "api_key"):
            out[key] = str(value).strip()
            if key == "remote_base_url":
                out[key] = out[key].rstrip("/")
        elif key == "auto_sync_enabled":
            out[key] = _parse_bool(key, value)
        elif key == "conflict_resolution_policy":
            try:
                out[key] = ConflictPolicy(str(getattr(value, "value", value)).strip().lower())
            except ValueError:
                raise ValidationError(
                    f"Política de conflictos inválida: {value!r}",
                    field="conflict_resolution_policy",
                )
        else:
            out[key] = _parse_int(key, value)
    return out
