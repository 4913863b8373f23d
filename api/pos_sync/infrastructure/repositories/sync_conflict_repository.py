"""
Repositorio de conflictos de sincronización (sync_conflicts).
"""
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pos_sync.infrastructure.database.models import SyncConflictModel
from pos_sync.shared.constants.sync_constants import ConflictResolution
from pos_sync.shared.utils.datetime_utils import utc_now_naive


class SyncConflictRepository:
    """
    Gestiona la tabla sync_conflicts.

    Toda resolución pasa por `resolve`, que filtra por `resolution IS NULL`:
    una fila resuelta nunca se vuelve a escribir.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        *,
        table: str,
        record_id: str,
        local_data: Optional[Dict[str, Any]],
        remote_data: Optional[Dict[str, Any]],
    ) -> SyncConflictModel:
        """Registra un conflicto sin resolver."""
        conflict = SyncConflictModel(
            table_name=table,
            record_id=str(record_id),
            local_data=local_data,
            remote_data=remote_data,
        )
        self.db.add(conflict)
        await self.db.flush()
        return conflict

    async def get(self, conflict_id: int) -> Optional[SyncConflictModel]:
        return await self.db.get(SyncConflictModel, conflict_id)

    async def list_unresolved(self) -> List[SyncConflictModel]:
        """Conflictos abiertos, del más antiguo al más nuevo."""
        result = await self.db.execute(
            select(SyncConflictModel)
            .where(SyncConflictModel.resolution.is_(None))
            .order_by(SyncConflictModel.id.asc())
        )
        return list(result.scalars().all())

    async def list(self, limit: int = 100, include_resolved: bool = False) -> List[SyncConflictModel]:
        """Lista conflictos recientes primero."""
        query = select(SyncConflictModel)
        if not include_resolved:
            query = query.where(SyncConflictModel.resolution.is_(None))
        result = await self.db.execute(
            query.order_by(SyncConflictModel.id.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def has_open_conflict(self, table: str, record_id: str) -> bool:
        result = await self.db.execute(
            select(SyncConflictModel.id).where(
                SyncConflictModel.table_name == table,
                SyncConflictModel.record_id == str(record_id),
                SyncConflictModel.resolution.is_(None),
            ).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def resolve(
        self,
        conflict_id: int,
        resolution: ConflictResolution,
        merged_data: Optional[Dict[str, Any]] = None,
        resolved_by: Optional[str] = None,
    ) -> bool:
        """
        Marca el conflicto como resuelto.

        Returns:
            bool: False si el conflicto no existe o ya estaba resuelto
        """
        result = await self.db.execute(
            update(SyncConflictModel)
            .where(
                SyncConflictModel.id == conflict_id,
                SyncConflictModel.resolution.is_(None),
            )
            .values(
                resolution=ConflictResolution(resolution).value,
                merged_data=merged_data,
                resolved_by=resolved_by,
                resolved_at=utc_now_naive(),
            )
            .execution_options(synchronize_session="fetch")
        )
        await self.db.flush()
        return (result.rowcount or 0) > 0
