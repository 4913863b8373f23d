"""
Tipos y utilidades puras para el cliente remoto.

Se mantienen libres de I/O para poder testearlos fácilmente.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


class Unauthenticated:
    """
    Marcador de modo degradado (sin token configurado).

    Se retorna, no se lanza: el motor sigue operando solo en local.
    """

    _instance: Optional["Unauthenticated"] = None

    def __new__(cls) -> "Unauthenticated":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNAUTHENTICATED"


UNAUTHENTICATED = Unauthenticated()


@dataclass(frozen=True)
class RemoteResult:
    """
    Resultado de una subida.

    - data: cuerpo de la respuesta
    - already_absent: DELETE con 404, el registro ya no existía en remoto
    """

    status_code: int
    data: dict[str, Any] = field(default_factory=dict)
    already_absent: bool = False

    @property
    def ok(self) -> bool:
        if self.already_absent:
            return True
        return 200 <= self.status_code < 300


@dataclass(frozen=True)
class RemoteChange:
    """Un cambio del feed remoto (/sync/changes)."""

    table: str
    action: str
    record_id: str
    data: dict[str, Any]
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class ChangeBatch:
    """
    Lote de cambios descargados.

    authenticated=False indica que la descarga se omitio por modo degradado.
    """

    changes: list[RemoteChange]
    authenticated: bool = True

    def __iter__(self):
        return iter(self.changes)

    def __len__(self) -> int:
        return len(self.changes)


@dataclass(frozen=True)
class ProbeResult:
    """Resultado de sondear un endpoint. Nunca representa una excepción."""

    ok: bool
    status: Optional[int] = None
    response_time_ms: Optional[float] = None
    error: Optional[str] = None
