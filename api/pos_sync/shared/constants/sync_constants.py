"""
Constantes del motor de sincronización.
"""
from enum import Enum


class SyncAction(str, Enum):
    """Acciones que se pueden encolar para el backend remoto."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SyncRecordStatus(str, Enum):
    """
    Estados de un registro de la cola de salida.

    DEAD es terminal: el registro agoto sus reintentos y solo vuelve a
    PENDING mediante un reencolado manual.
    """
    PENDING = "pending"
    SYNCING = "syncing"
    SYNCED = "synced"
    FAILED = "failed"
    CONFLICT = "conflict"
    DEAD = "dead"


class SyncDirection(str, Enum):
    """Dirección de un cambio registrado en sync_log."""
    OUTBOUND = "outbound"
    INBOUND = "inbound"


class ConflictPolicy(str, Enum):
    """Política configurable de resolución de conflictos."""
    LOCAL = "local"
    REMOTE = "remote"
    MANUAL = "manual"


class ConflictResolution(str, Enum):
    """Resolución aplicada a un conflicto (terminal)."""
    LOCAL = "local"
    REMOTE = "remote"
    MERGE = "merge"


class OrchestratorState(str, Enum):
    """Fases de un ciclo de sincronización."""
    IDLE = "idle"
    UPLOADING = "uploading"
    DOWNLOADING = "downloading"
    RESOLVING_CONFLICTS = "resolving_conflicts"


class ChannelState(str, Enum):
    """Estados del canal realtime."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


# Estados de la cola que indican una mutación local aun no confirmada
# (o confirmada dentro del ciclo actual) y que, por tanto, chocan con un
# cambio remoto sobre el mismo registro.
OPEN_LOCAL_STATUSES = (
    SyncRecordStatus.PENDING,
    SyncRecordStatus.SYNCING,
    SyncRecordStatus.FAILED,
    SyncRecordStatus.CONFLICT,
)

# Firma de las resoluciones automáticas (resolved_by)
SYSTEM_RESOLVER = "system"

# Claves persistidas en la tabla sync_config
CONFIG_KEYS = (
    "remote_base_url",
    "api_key",
    "sync_interval_minutes",
    "auto_sync_enabled",
    "conflict_resolution_policy",
    "batch_size",
    "retry_attempts",
    "retry_delay_ms",
)
