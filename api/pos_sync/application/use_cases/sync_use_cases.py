"""
Casos de uso de la API de sincronización.
Conectan los endpoints con el motor (SyncEngine) y los repositorios.
"""
from datetime import timedelta
from typing import List, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from pos_sync.application.dto.sync_dto import (
    ConflictDTO,
    EnqueueRequestDTO,
    EnqueueResponseDTO,
    PurgeResponseDTO,
    RequeueResponseDTO,
    ResolveConflictRequestDTO,
    ResolveConflictResponseDTO,
    SyncConfigDTO,
    SyncConfigUpdateDTO,
    SyncQueueListDTO,
    SyncRecordDTO,
    SyncRunResponseDTO,
    SyncStatusDTO,
)
from pos_sync.application.services.sync_engine import SyncEngine
from pos_sync.infrastructure.repositories.sync_conflict_repository import SyncConflictRepository
from pos_sync.infrastructure.repositories.sync_queue_repository import SyncQueueRepository
from pos_sync.shared.constants.sync_constants import SyncRecordStatus
from pos_sync.shared.exceptions.sync import ValidationError
from pos_sync.shared.utils.datetime_utils import utc_now


class SyncUseCases:
    """
    Casos de uso del operador: cola, ciclos, conflictos y configuración.
    """

    def __init__(self, db: AsyncSession, engine: SyncEngine):
        self.db = db
        self.engine = engine
        self.queue = SyncQueueRepository(db)
        self.conflicts = SyncConflictRepository(db)

    # ------------------------------------------------------------------
    # Estado y ciclos
    # ------------------------------------------------------------------

    async def get_status(self) -> SyncStatusDTO:
        status = self.engine.get_status()
        dto = SyncStatusDTO.model_validate(status)

        # Los contadores del último ciclo pueden estar viejos: se leen de la cola
        stats = await self.queue.stats()
        dto.total_records = stats["total"]
        dto.synced_records = stats[SyncRecordStatus.SYNCED.value]
        dto.failed_records = stats[SyncRecordStatus.FAILED.value]
        dto.conflict_records = stats[SyncRecordStatus.CONFLICT.value]
        dto.dead_records = stats[SyncRecordStatus.DEAD.value]
        return dto

    async def run_sync(self) -> SyncRunResponseDTO:
        """
        Dispara un ciclo inmediato.

        Si ya hay un ciclo en curso no se espera ni se encola: accepted=False.
        """
        result = await self.engine.sync_now()
        return SyncRunResponseDTO(
            accepted=result.accepted,
            status=SyncStatusDTO.model_validate(result.status),
        )

    # ------------------------------------------------------------------
    # Cola
    # ------------------------------------------------------------------

    async def enqueue(self, dto: EnqueueRequestDTO) -> EnqueueResponseDTO:
        queue_id = await self.queue.enqueue(dto.table, dto.action.value, dto.data, dto.id)
        await self.db.commit()
        return EnqueueResponseDTO(id=queue_id, status=SyncRecordStatus.PENDING.value)

    async def list_queue(
        self, limit: int = 50, offset: int = 0, status: Optional[str] = None
    ) -> SyncQueueListDTO:
        if status is not None:
            try:
                status = SyncRecordStatus(status).value
            except ValueError:
                raise ValidationError(f"Estado inválido: {status}", field="status")

        records = await self.queue.list(limit=limit, offset=offset, status=status)
        stats = await self.queue.stats()
        return SyncQueueListDTO(
            records=[SyncRecordDTO.model_validate(r) for r in records],
            stats=stats,
            limit=limit,
            offset=offset,
        )

    async def get_record(self, record_id: str) -> SyncRecordDTO:
        record = await self.queue.get_or_raise(record_id)
        return SyncRecordDTO.model_validate(record)

    async def requeue(self, ids: Optional[List[str]] = None) -> RequeueResponseDTO:
        requeued = await self.queue.requeue_failed(ids)
        await self.db.commit()
        return RequeueResponseDTO(requeued=requeued)

    async def purge(self, older_than_days: int = 7) -> PurgeResponseDTO:
        if older_than_days < 0:
            raise ValidationError("older_than_days debe ser >= 0", field="older_than_days")
        deleted = await self.queue.purge(utc_now() - timedelta(days=older_than_days))
        await self.db.commit()
        logger.info(f"Purga de la cola: {deleted} registros terminales eliminados")
        return PurgeResponseDTO(deleted=deleted)

    # ------------------------------------------------------------------
    # Conflictos
    # ------------------------------------------------------------------

    async def list_conflicts(self, limit: int = 100, include_resolved: bool = False) -> List[ConflictDTO]:
        conflicts = await self.conflicts.list(limit=limit, include_resolved=include_resolved)
        return [ConflictDTO.model_validate(c) for c in conflicts]

    async def resolve_conflict(
        self, conflict_id: int, dto: ResolveConflictRequestDTO, resolved_by: str
    ) -> ResolveConflictResponseDTO:
        outcome = await self.engine.resolve_conflict(
            conflict_id, dto.resolution, dto.merged_data, resolved_by
        )
        return ResolveConflictResponseDTO(
            conflict_id=outcome.conflict_id,
            resolution=outcome.resolution,
            applied_data=outcome.applied_data,
            requeued_id=outcome.requeued_id,
        )

    # ------------------------------------------------------------------
    # Configuración
    # ------------------------------------------------------------------

    def get_config(self) -> SyncConfigDTO:
        return SyncConfigDTO(**self.engine.config.to_public())

    async def update_config(self, dto: SyncConfigUpdateDTO) -> SyncConfigDTO:
        changes = dto.model_dump(exclude_unset=True)
        if not changes:
            return self.get_config()
        config = await self.engine.update_config(**changes)
        return SyncConfigDTO(**config.to_public())
