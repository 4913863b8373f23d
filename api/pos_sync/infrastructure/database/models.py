"""
Modelos de base de datos (ORM) del ledger de sincronización.

Los timestamps se generan del lado de Python (UTC, con microsegundos):
SQLite trunca CURRENT_TIMESTAMP a segundos y el cursor de descarga y los
reintentos dependen de esa precision.
"""
from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String, Text

from pos_sync.infrastructure.database.session import Base
from pos_sync.shared.utils.datetime_utils import utc_now_naive as _now


class SyncQueueModel(Base):
    """
    Cola de salida: un registro por mutación local.

    `seq` es el orden de inserción y desempata el orden FIFO del lote.
    """

    __tablename__ = "sync_queue"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), nullable=False, unique=True, index=True)
    table_name = Column(String(100), nullable=False, index=True)
    # Id de la entidad (local_data["id"] o el id del registro)
    record_id = Column(String(64), nullable=False, index=True)
    action = Column(String(20), nullable=False)
    local_data = Column(JSON, nullable=False, default=dict)
    remote_data = Column(JSON, nullable=True)
    status = Column(String(20), nullable=False, default="pending", index=True)
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    retryable = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=_now)
    updated_at = Column(DateTime, nullable=False, default=_now, onupdate=_now)

    def __repr__(self):
        return f"<SyncQueue(id={self.id}, table={self.table_name}, action={self.action}, status={self.status})>"


class SyncLogModel(Base):
    """Registro append-only de cambios aplicados (entrada o salida)."""

    __tablename__ = "sync_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sync_id = Column(String(64), nullable=True, index=True)
    table_name = Column(String(100), nullable=False)
    record_id = Column(String(64), nullable=False, index=True)
    action = Column(String(20), nullable=False)
    direction = Column(String(10), nullable=False, default="outbound")
    status = Column(String(20), nullable=False)
    error_message = Column(Text, nullable=True)
    sync_duration_ms = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=_now, index=True)

    def __repr__(self):
        return f"<SyncLog(id={self.id}, table={self.table_name}, record={self.record_id}, status={self.status})>"


class SyncConflictModel(Base):
    """
    Conflictos entre version local y remota.
    Una fila con `resolution` no nula es terminal.
    """

    __tablename__ = "sync_conflicts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    record_id = Column(String(64), nullable=False, index=True)
    table_name = Column(String(100), nullable=False)
    local_data = Column(JSON, nullable=True)
    remote_data = Column(JSON, nullable=True)
    resolution = Column(String(20), nullable=True, index=True)
    merged_data = Column(JSON, nullable=True)
    resolved_by = Column(String(100), nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=_now)

    def __repr__(self):
        return f"<SyncConflict(id={self.id}, table={self.table_name}, record={self.record_id}, resolution={self.resolution})>"


class SyncConfigModel(Base):
    """Configuración persistida del motor (clave/valor)."""

    __tablename__ = "sync_config"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=_now, onupdate=_now)

    def __repr__(self):
        return f"<SyncConfig(key={self.key}, value={self.value})>"
