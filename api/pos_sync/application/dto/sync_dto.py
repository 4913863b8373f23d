"""
DTOs de la API de sincronización.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from pos_sync.shared.constants.sync_constants import (
    ConflictPolicy,
    ConflictResolution,
    OrchestratorState,
    SyncAction,
)


class EnqueueRequestDTO(BaseModel):
    """DTO para encolar una mutación local."""

    table: str = Field(..., min_length=1, max_length=100, description="Tabla local")
    action: SyncAction = Field(..., description="create | update | delete")
    data: Dict[str, Any] = Field(default_factory=dict, description="Payload local")
    id: Optional[str] = Field(None, max_length=64, description="Id del registro en la cola")


class EnqueueResponseDTO(BaseModel):
    id: str
    status: str


class SyncRecordDTO(BaseModel):
    """DTO de respuesta para un registro de la cola."""

    id: str
    table_name: str
    record_id: str
    action: str
    local_data: Dict[str, Any]
    remote_data: Optional[Dict[str, Any]] = None
    status: str
    error_message: Optional[str] = None
    retry_count: int
    retryable: bool
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SyncQueueListDTO(BaseModel):
    """DTO de respuesta para la lista de la cola."""

    records: List[SyncRecordDTO]
    stats: Dict[str, int]
    limit: int
    offset: int


class RequeueRequestDTO(BaseModel):
    """Ids a reencolar; None reencola todos los failed/dead."""

    ids: Optional[List[str]] = None


class RequeueResponseDTO(BaseModel):
    requeued: List[str]


class PurgeResponseDTO(BaseModel):
    deleted: int


class SyncStatusDTO(BaseModel):
    """Estado observable del motor."""

    is_running: bool
    state: OrchestratorState
    last_sync: Optional[datetime] = None
    next_sync: Optional[datetime] = None
    total_records: int = 0
    synced_records: int = 0
    failed_records: int = 0
    conflict_records: int = 0
    dead_records: int = 0
    errors: List[str] = Field(default_factory=list)
    current_operation: Optional[str] = None
    degraded: bool = False
    last_cycle_duration_ms: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class SyncRunResponseDTO(BaseModel):
    accepted: bool
    status: SyncStatusDTO


class ConflictDTO(BaseModel):
    """DTO de respuesta para un conflicto."""

    id: int
    record_id: str
    table_name: str
    local_data: Optional[Dict[str, Any]] = None
    remote_data: Optional[Dict[str, Any]] = None
    resolution: Optional[str] = None
    merged_data: Optional[Dict[str, Any]] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ResolveConflictRequestDTO(BaseModel):
    """DTO para resolver un conflicto manualmente."""

    resolution: ConflictResolution
    merged_data: Optional[Dict[str, Any]] = Field(
        None, description="Solo para merge; si falta se combinan local sobre remoto"
    )


class ResolveConflictResponseDTO(BaseModel):
    conflict_id: int
    resolution: ConflictResolution
    applied_data: Optional[Dict[str, Any]] = None
    requeued_id: Optional[str] = None


class SyncConfigDTO(BaseModel):
    """Configuración pública (el token nunca se devuelve)."""

    remote_base_url: str
    api_key_configured: bool
    sync_interval_minutes: int
    auto_sync_enabled: bool
    conflict_resolution_policy: ConflictPolicy
    batch_size: int
    retry_attempts: int
    retry_delay_ms: int


class SyncConfigUpdateDTO(BaseModel):
    """DTO para actualizar la configuración (solo los campos enviados)."""

    remote_base_url: Optional[str] = Field(None, min_length=1)
    api_key: Optional[str] = None
    sync_interval_minutes: Optional[int] = None
    auto_sync_enabled: Optional[bool] = None
    conflict_resolution_policy: Optional[ConflictPolicy] = None
    batch_size: Optional[int] = None
    retry_attempts: Optional[int] = None
    retry_delay_ms: Optional[int] = None

    model_config = ConfigDict(extra="forbid")
