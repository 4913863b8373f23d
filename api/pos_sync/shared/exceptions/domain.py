"""
Excepciones relacionadas con la lógica de dominio (cola, conflictos).
"""
from typing import Any

from pos_sync.shared.exceptions.base import AppException


class DomainException(AppException):
    """Excepción base para errores de dominio."""

    def __init__(self, message: str, error_code: str = "DOMAIN_ERROR", details=None):
        super().__init__(
            message=message,
            status_code=400,
            error_code=error_code,
            details=details
        )


class EntityNotFoundException(DomainException):
    """Excepción cuando no se encuentra una entidad."""

    def __init__(self, entity_name: str, entity_id: Any):
        super().__init__(
            message=f"{entity_name} con ID {entity_id} no encontrado",
            error_code="ENTITY_NOT_FOUND",
            details={"entity": entity_name, "id": str(entity_id)}
        )
        self.status_code = 404


class SyncRecordNotFoundException(EntityNotFoundException):
    """Registro de la cola de sincronización inexistente."""

    def __init__(self, record_id: str):
        super().__init__("SyncRecord", record_id)
        self.error_code = "SYNC_RECORD_NOT_FOUND"


class ConflictNotFoundException(EntityNotFoundException):
    """Conflicto inexistente."""

    def __init__(self, conflict_id: int):
        super().__init__("SyncConflict", conflict_id)
        self.error_code = "CONFLICT_NOT_FOUND"


class ConflictAlreadyResolvedException(DomainException):
    """
    Un conflicto con resolución no nula es terminal.
    Reprocesarlo es un error para el operador (y un no-op para el motor).
    """

    def __init__(self, conflict_id: int, resolution: str):
        super().__init__(
            message=f"El conflicto {conflict_id} ya fue resuelto ({resolution})",
            error_code="CONFLICT_ALREADY_RESOLVED",
            details={"conflict_id": conflict_id, "resolution": resolution}
        )
        self.status_code = 409


class InvalidStatusTransitionException(DomainException):
    """Transición de estado no permitida para un registro de la cola."""

    def __init__(self, record_id: str, current: str, target: str):
        super().__init__(
            message=f"Transición inválida para {record_id}: {current} -> {target}",
            error_code="INVALID_STATUS_TRANSITION",
            details={"record_id": record_id, "from": current, "to": target}
        )
        self.status_code = 409
