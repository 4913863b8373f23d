"""
Resolución de conflictos entre la version local y la remota de un registro.

Políticas:
- local: gana el payload local; el remoto queda en remote_data (auditoria)
  y el local se reencola como update para que el remoto converja.
- remote: el payload remoto sobrescribe el almacén local.
- manual: no se resuelve nada; el conflicto queda abierto (resolution NULL)
  y su registro de la cola bloqueado en 'conflict' hasta que un operador
  lo resuelva.

Una resolución es terminal: resolver dos veces el mismo conflicto es un
error y no cambia nada.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import async_sessionmaker

from pos_sync.infrastructure.database.local_store import LocalStore
from pos_sync.infrastructure.database.models import SyncConflictModel
from pos_sync.infrastructure.repositories.sync_conflict_repository import SyncConflictRepository
from pos_sync.infrastructure.repositories.sync_queue_repository import SyncQueueRepository
from pos_sync.shared.constants.sync_constants import (
    SYSTEM_RESOLVER,
    ConflictPolicy,
    ConflictResolution,
    SyncAction,
    SyncRecordStatus,
)
from pos_sync.shared.exceptions.domain import (
    ConflictAlreadyResolvedException,
    ConflictNotFoundException,
)
from pos_sync.shared.exceptions.sync import ValidationError
from pos_sync.shared.utils.audit_logger import SyncAuditLogger


def decide(policy: ConflictPolicy) -> Optional[ConflictResolution]:
    """Resolución automática para una política; None = esperar al operador."""
    if policy == ConflictPolicy.LOCAL:
        return ConflictResolution.LOCAL
    if policy == ConflictPolicy.REMOTE:
        return ConflictResolution.REMOTE
    return None


def merge_payloads(local: Optional[dict[str, Any]], remote: Optional[dict[str, Any]]) -> dict[str, Any]:
    """Merge superficial: los campos locales sobrescriben a los remotos."""
    return {**(remote or {}), **(local or {})}


def diverges(local: Optional[dict[str, Any]], remote: Optional[dict[str, Any]]) -> bool:
    """
    Indica si dos versiones del mismo registro difieren.

    Solo se comparan los campos presentes en ambas; un borrado (None) frente
    a un payload siempre diverge.
    """
    if local is None or remote is None:
        return local is not remote
    return any(local[k] != remote[k] for k in local.keys() & remote.keys())


@dataclass(frozen=True)
class ResolutionOutcome:
    """Resultado de aplicar una resolución."""

    conflict_id: int
    resolution: ConflictResolution
    applied_data: Optional[dict[str, Any]]
    requeued_id: Optional[str] = None


@dataclass
class ResolutionSummary:
    resolved: int = 0
    awaiting_operator: int = 0
    errors: list[str] = field(default_factory=list)


class ConflictResolver:
    """
    Aplica resoluciones sobre el almacén local y el ledger.

    Cada paso usa su propia sesión corta; las escrituras al almacén local
    se hacen fuera de esas sesiones.
    """

    def __init__(self, session_factory: async_sessionmaker, local_store: LocalStore) -> None:
        self._session_factory = session_factory
        self._store = local_store

    async def process_unresolved(self, policy: ConflictPolicy) -> ResolutionSummary:
        """Procesa los conflictos abiertos según la política vigente."""
        summary = ResolutionSummary()
        async with self._session_factory() as db:
            conflicts = await SyncConflictRepository(db).list_unresolved()

        resolution = decide(policy)
        if resolution is None:
            summary.awaiting_operator = len(conflicts)
            if conflicts:
                logger.info(f"{len(conflicts)} conflictos esperan resolución manual")
            return summary

        for conflict in conflicts:
            try:
                await self.resolve(conflict.id, resolution, resolved_by=SYSTEM_RESOLVER)
                summary.resolved += 1
            except ConflictAlreadyResolvedException:
                # Resuelto en paralelo por un operador
                continue
            except Exception as e:
                logger.error(f"Error resolviendo conflicto {conflict.id}: {e}")
                summary.errors.append(
                    f"Failed to resolve conflict {conflict.table_name}:{conflict.record_id} - {e}"
                )
        return summary

    async def resolve(
        self,
        conflict_id: int,
        resolution: ConflictResolution,
        merged_data: Optional[dict[str, Any]] = None,
        resolved_by: str = SYSTEM_RESOLVER,
    ) -> ResolutionOutcome:
        """
        Resuelve un conflicto y aplica el payload ganador.

        Raises:
            ConflictNotFoundException: Si el conflicto no existe
            ConflictAlreadyResolvedException: Si ya tenía resolución
            ValidationError: Si la resolución no es válida
        """
        try:
            resolution = ConflictResolution(resolution)
        except ValueError:
            raise ValidationError(f"Resolución inválida: {resolution}", field="resolution")
        if merged_data is not None and not isinstance(merged_data, dict):
            raise ValidationError("merged_data debe ser un objeto", field="merged_data")

        async with self._session_factory() as db:
            conflict = await SyncConflictRepository(db).get(conflict_id)
            if conflict is None:
                raise ConflictNotFoundException(conflict_id)
            if conflict.resolution is not None:
                raise ConflictAlreadyResolvedException(conflict_id, conflict.resolution)
            open_records = await SyncQueueRepository(db).list_open_for(
                conflict.table_name, conflict.record_id
            )

        local_action = open_records[-1].action if open_records else SyncAction.UPDATE.value
        applied = self._winning_payload(conflict, resolution, merged_data)

        async with self._session_factory() as db:
            conflicts = SyncConflictRepository(db)
            queue = SyncQueueRepository(db)

            stored_merge = applied if resolution == ConflictResolution.MERGE else None
            if not await conflicts.resolve(conflict_id, resolution, stored_merge, resolved_by):
                await db.rollback()
                raise ConflictAlreadyResolvedException(conflict_id, "concurrente")

            for record in await queue.list_open_for(conflict.table_name, conflict.record_id):
                if record.status == SyncRecordStatus.CONFLICT.value:
                    await queue.mark_status(
                        record.id,
                        SyncRecordStatus.SYNCED,
                        f"Conflicto {conflict_id} resuelto ({resolution.value})",
                    )

            requeued_id = None
            if resolution in (ConflictResolution.LOCAL, ConflictResolution.MERGE):
                requeued_id = await self._requeue(queue, conflict, resolution, applied, local_action)

            await db.commit()

        # Solo quien ganó el reclamo escribe en el almacén local
        await self._apply_locally(conflict, resolution, applied)

        SyncAuditLogger.log_transition(
            conflict.table_name, conflict.record_id, "conflict", "open", resolution.value
        )
        logger.info(
            f"Conflicto {conflict_id} ({conflict.table_name}:{conflict.record_id}) "
            f"resuelto como {resolution.value} por {resolved_by}"
        )
        return ResolutionOutcome(
            conflict_id=conflict_id,
            resolution=resolution,
            applied_data=applied,
            requeued_id=requeued_id,
        )

    def _winning_payload(
        self,
        conflict: SyncConflictModel,
        resolution: ConflictResolution,
        merged_data: Optional[dict[str, Any]],
    ) -> Optional[dict[str, Any]]:
        if resolution == ConflictResolution.LOCAL:
            return conflict.local_data
        if resolution == ConflictResolution.REMOTE:
            return conflict.remote_data
        if merged_data is not None:
            return merged_data
        return merge_payloads(conflict.local_data, conflict.remote_data)

    async def _apply_locally(
        self,
        conflict: SyncConflictModel,
        resolution: ConflictResolution,
        payload: Optional[dict[str, Any]],
    ) -> None:
        """Escribe el payload ganador en el almacén local."""
        table, record_id = conflict.table_name, conflict.record_id

        if resolution == ConflictResolution.LOCAL:
            # El almacén local ya refleja la mutación local
            return
        if payload is None:
            await self._store.delete_record(table, record_id)
            return
        await self._store.upsert_record(table, record_id, payload)

    async def _requeue(
        self,
        queue: SyncQueueRepository,
        conflict: SyncConflictModel,
        resolution: ConflictResolution,
        payload: Optional[dict[str, Any]],
        local_action: str,
    ) -> str:
        """Reencola el payload ganador para que el remoto converja."""
        data = dict(payload or {})
        data.setdefault("id", conflict.record_id)
        action = SyncAction.UPDATE
        if resolution == ConflictResolution.LOCAL and local_action == SyncAction.DELETE.value:
            action = SyncAction.DELETE
        return await queue.enqueue(conflict.table_name, action.value, data)
