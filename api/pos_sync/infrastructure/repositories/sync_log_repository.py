"""
Repositorio del registro append-only de cambios aplicados (sync_log).
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pos_sync.infrastructure.database.models import SyncLogModel
from pos_sync.shared.constants.sync_constants import SyncDirection, SyncRecordStatus
from pos_sync.shared.utils.datetime_utils import ensure_utc


class SyncLogRepository:
    """Gestiona la tabla sync_log. Las entradas se escriben una sola vez."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(
        self,
        *,
        table: str,
        record_id: str,
        action: str,
        status: str,
        direction: SyncDirection = SyncDirection.OUTBOUND,
        sync_id: Optional[str] = None,
        error: Optional[str] = None,
        duration_ms: Optional[int] = None,
    ) -> SyncLogModel:
        """Agrega una entrada al registro."""
        entry = SyncLogModel(
            sync_id=sync_id,
            table_name=table,
            record_id=str(record_id),
            action=action,
            direction=SyncDirection(direction).value,
            status=status,
            error_message=error,
            sync_duration_ms=duration_ms,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def last_synced_at(self) -> Optional[datetime]:
        """
        Cursor de descarga: fecha del último cambio remoto procesado
        (aplicado o derivado a conflicto).

        Returns:
            Optional[datetime]: datetime UTC aware o None si nunca se descargo
        """
        result = await self.db.execute(
            select(func.max(SyncLogModel.created_at)).where(
                SyncLogModel.direction == SyncDirection.INBOUND.value,
                SyncLogModel.status.in_([
                    SyncRecordStatus.SYNCED.value,
                    SyncRecordStatus.CONFLICT.value,
                ]),
            )
        )
        value = result.scalar_one_or_none()
        return ensure_utc(value) if value else None

    async def list(
        self,
        limit: int = 100,
        direction: Optional[str] = None,
        record_id: Optional[str] = None,
    ) -> List[SyncLogModel]:
        """Lista las entradas más recientes primero."""
        query = select(SyncLogModel)
        if direction:
            query = query.where(SyncLogModel.direction == direction)
        if record_id is not None:
            query = query.where(SyncLogModel.record_id == str(record_id))
        result = await self.db.execute(
            query.order_by(SyncLogModel.id.desc()).limit(limit)
        )
        return list(result.scalars().all())
