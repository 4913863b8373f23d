"""
Taxonomia de errores del motor de sincronización.

Reglas de propagación:
- Los errores por registro se capturan y se guardan en la cola / sync_log;
  nunca abortan el ciclo completo.
- `retryable` indica si el orquestador puede volver a intentar el registro
  automáticamente en un ciclo posterior.
- ConflictDetected NO es un falló: se enruta al ConflictResolver.
"""
from typing import Any, Dict, Optional

from pos_sync.shared.exceptions.base import AppException


class SyncError(AppException):
    """Excepción base para errores de sincronización."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "SYNC_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=status_code,
            error_code=error_code,
            details=details,
        )


class TransportError(SyncError):
    """
    Error de red, timeout o respuesta 5xx/429 del backend remoto.
    Es elegible para reintento.
    """

    retryable = True

    def __init__(self, message: str, remote_status: Optional[int] = None):
        super().__init__(
            message=message,
            status_code=503,
            error_code="TRANSPORT_ERROR",
            details={"remote_status": remote_status} if remote_status else None,
        )
        self.remote_status = remote_status


class AuthenticationError(SyncError):
    """El backend rechazo el token (401/403). No se reintenta: modo degradado."""

    def __init__(self, message: str = "Token remoto inválido o expirado", remote_status: Optional[int] = None):
        super().__init__(
            message=message,
            status_code=401,
            error_code="REMOTE_AUTHENTICATION_ERROR",
            details={"remote_status": remote_status} if remote_status else None,
        )
        self.remote_status = remote_status


class ConfigurationError(SyncError):
    """Tabla sin mapeo o endpoint inexistente. Fatal para ese registro."""

    def __init__(self, message: str, table: Optional[str] = None):
        super().__init__(
            message=message,
            status_code=500,
            error_code="SYNC_CONFIGURATION_ERROR",
            details={"table": table} if table else None,
        )
        self.table = table


class ValidationError(SyncError):
    """Payload o configuración mal formados. Marca el registro como failed."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(
            message=message,
            status_code=400,
            error_code="VALIDATION_ERROR",
            details={"field": field} if field else None,
        )
        self.field = field


class RemoteRequestError(SyncError):
    """Cualquier otra respuesta no-2xx del backend remoto (4xx no cubiertos)."""

    def __init__(self, message: str, remote_status: int):
        super().__init__(
            message=message,
            status_code=502,
            error_code="REMOTE_REQUEST_ERROR",
            details={"remote_status": remote_status},
        )
        self.remote_status = remote_status


class ConflictDetected(SyncError):
    """
    Señal de conflicto (409 / clave duplicada en create, o cambio remoto
    sobre un registro con mutación local abierta). No es un fallo.
    """

    def __init__(
        self,
        table: str,
        record_id: str,
        remote_data: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=f"Conflicto detectado en {table}:{record_id}",
            status_code=409,
            error_code="SYNC_CONFLICT",
            details={"table": table, "record_id": record_id},
        )
        self.table = table
        self.record_id = record_id
        self.remote_data = remote_data or {}
