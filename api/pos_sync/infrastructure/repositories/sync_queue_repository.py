"""
Repositorio de la cola de salida (sync_queue).

Es el registro durable de mutaciones locales pendientes de subir.
`enqueue` nunca toca la red; `mark_status` es el único mutador de estado
que usa el orquestador y valida la transición antes de escribir.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from loguru import logger
from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from pos_sync.infrastructure.database.models import SyncQueueModel
from pos_sync.shared.constants.sync_constants import (
    OPEN_LOCAL_STATUSES,
    SyncAction,
    SyncRecordStatus,
)
from pos_sync.shared.exceptions.domain import (
    InvalidStatusTransitionException,
    SyncRecordNotFoundException,
)
from pos_sync.shared.exceptions.sync import ValidationError
from pos_sync.shared.utils.datetime_utils import to_naive_utc, utc_now, utc_now_naive


S = SyncRecordStatus

# Transiciones permitidas. failed/dead -> pending solo vía reencolado manual;
# conflict -> synced cuando el conflicto se resuelve.
ALLOWED_TRANSITIONS: Dict[SyncRecordStatus, frozenset] = {
    S.PENDING: frozenset({S.SYNCING, S.CONFLICT}),
    S.SYNCING: frozenset({S.SYNCED, S.FAILED, S.CONFLICT, S.DEAD, S.PENDING}),
    S.FAILED: frozenset({S.SYNCING, S.PENDING, S.CONFLICT}),
    S.CONFLICT: frozenset({S.SYNCED}),
    S.DEAD: frozenset({S.PENDING}),
    S.SYNCED: frozenset(),
}


class SyncQueueRepository:
    """Gestiona la tabla sync_queue."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def enqueue(
        self,
        table: str,
        action: str,
        payload: Dict[str, Any],
        record_id: Optional[str] = None,
    ) -> str:
        """
        Agrega una mutación local a la cola en estado pending.

        Args:
            table: Tabla local afectada
            action: create | update | delete
            payload: Datos locales de la mutación
            record_id: Id del registro en la cola (se genera si no viene)

        Returns:
            str: Id del registro encolado

        Raises:
            ValidationError: Si la acción no es válida o el id ya existe
        """
        try:
            action_value = SyncAction(action).value
        except ValueError:
            raise ValidationError(f"Acción de sincronización inválida: {action}", field="action")
        if not table:
            raise ValidationError("La tabla es obligatoria", field="table")
        if payload is not None and not isinstance(payload, dict):
            raise ValidationError("El payload debe ser un objeto", field="payload")

        queue_id = record_id or uuid4().hex
        if await self.get(queue_id) is not None:
            raise ValidationError(f"Ya existe un registro en la cola con id {queue_id}", field="id")

        payload = payload or {}
        entity_id = payload.get("id", queue_id)

        record = SyncQueueModel(
            id=queue_id,
            table_name=table,
            record_id=str(entity_id),
            action=action_value,
            local_data=payload,
            status=S.PENDING.value,
            retry_count=0,
            retryable=True,
        )
        self.db.add(record)
        await self.db.flush()
        logger.debug(f"Encolado {table}:{entity_id} ({action_value}) como {queue_id}")
        return queue_id

    async def get(self, record_id: str) -> Optional[SyncQueueModel]:
        """Obtiene un registro de la cola por su id."""
        result = await self.db.execute(
            select(SyncQueueModel).where(SyncQueueModel.id == record_id)
        )
        return result.scalars().first()

    async def get_or_raise(self, record_id: str) -> SyncQueueModel:
        record = await self.get(record_id)
        if record is None:
            raise SyncRecordNotFoundException(record_id)
        return record

    async def list_pending(
        self,
        limit: int,
        *,
        retry_attempts: Optional[int] = None,
        retry_delay_ms: int = 0,
        now: Optional[datetime] = None,
    ) -> List[SyncQueueModel]:
        """
        Retorna hasta `limit` registros elegibles, del más antiguo al más nuevo.

        Elegibles: pending, y si se indica `retry_attempts`, los failed
        reintentables con retry_count < retry_attempts cuyo último intento
        tiene al menos `retry_delay_ms` de antigüedad.
        """
        condition = SyncQueueModel.status == S.PENDING.value
        if retry_attempts is not None:
            cutoff = to_naive_utc(now or utc_now()) - timedelta(milliseconds=retry_delay_ms)
            condition = or_(
                condition,
                and_(
                    SyncQueueModel.status == S.FAILED.value,
                    SyncQueueModel.retryable.is_(True),
                    SyncQueueModel.retry_count < retry_attempts,
                    SyncQueueModel.updated_at <= cutoff,
                ),
            )
        result = await self.db.execute(
            select(SyncQueueModel)
            .where(condition)
            .order_by(SyncQueueModel.seq.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def mark_status(
        self,
        record_id: str,
        status: SyncRecordStatus,
        error: Optional[str] = None,
        *,
        remote_data: Optional[Dict[str, Any]] = None,
        increment_retry: bool = False,
        retryable: Optional[bool] = None,
    ) -> SyncQueueModel:
        """
        Transiciona un registro de la cola.

        Raises:
            SyncRecordNotFoundException: Si el registro no existe
            InvalidStatusTransitionException: Si la transición no está permitida
        """
        record = await self.get_or_raise(record_id)
        current = S(record.status)
        target = S(status)
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidStatusTransitionException(record_id, current.value, target.value)

        record.status = target.value
        record.error_message = error
        if remote_data is not None:
            record.remote_data = remote_data
        if increment_retry:
            record.retry_count = (record.retry_count or 0) + 1
        if retryable is not None:
            record.retryable = retryable
        record.updated_at = utc_now_naive()
        await self.db.flush()
        return record

    async def list(
        self,
        limit: int = 50,
        offset: int = 0,
        status: Optional[str] = None,
    ) -> List[SyncQueueModel]:
        """Lista la cola del más nuevo al más antiguo (para la UI del operador)."""
        query = select(SyncQueueModel)
        if status:
            query = query.where(SyncQueueModel.status == status)
        result = await self.db.execute(
            query.order_by(SyncQueueModel.seq.desc()).limit(limit).offset(offset)
        )
        return list(result.scalars().all())

    async def list_open_for(self, table: str, entity_id: str) -> List[SyncQueueModel]:
        """Registros con mutación local abierta sobre la misma entidad."""
        result = await self.db.execute(
            select(SyncQueueModel)
            .where(
                SyncQueueModel.table_name == table,
                SyncQueueModel.record_id == str(entity_id),
                SyncQueueModel.status.in_([s.value for s in OPEN_LOCAL_STATUSES]),
            )
            .order_by(SyncQueueModel.seq.asc())
        )
        return list(result.scalars().all())

    async def latest_synced_since(
        self, table: str, entity_id: str, since: datetime
    ) -> Optional[SyncQueueModel]:
        """Último registro subido de la entidad desde `since` (ciclo actual)."""
        result = await self.db.execute(
            select(SyncQueueModel)
            .where(
                SyncQueueModel.table_name == table,
                SyncQueueModel.record_id == str(entity_id),
                SyncQueueModel.status == S.SYNCED.value,
                SyncQueueModel.updated_at >= to_naive_utc(since),
            )
            .order_by(SyncQueueModel.seq.desc())
        )
        return result.scalars().first()

    async def stats(self) -> Dict[str, int]:
        """Cuenta registros por estado."""
        result = await self.db.execute(
            select(SyncQueueModel.status, func.count()).group_by(SyncQueueModel.status)
        )
        counts = {s.value: 0 for s in S}
        for status, count in result.all():
            counts[status] = count
        counts["total"] = sum(counts[s.value] for s in S)
        return counts

    async def requeue_failed(self, ids: Optional[Iterable[str]] = None) -> List[str]:
        """
        Reintento manual: failed/dead -> pending.
        Solo cambia el estado; retry_count y el error se conservan.
        """
        query = select(SyncQueueModel).where(
            SyncQueueModel.status.in_([S.FAILED.value, S.DEAD.value])
        )
        if ids is not None:
            query = query.where(SyncQueueModel.id.in_(list(ids)))
        result = await self.db.execute(query.order_by(SyncQueueModel.seq.asc()))
        records = result.scalars().all()
        now = utc_now_naive()
        for record in records:
            record.status = S.PENDING.value
            record.updated_at = now
        await self.db.flush()
        if records:
            logger.info(f"Reencolados {len(records)} registros fallidos")
        return [r.id for r in records]

    async def purge(
        self,
        older_than: datetime,
        statuses: Iterable[str] = (S.SYNCED.value, S.DEAD.value),
    ) -> int:
        """Elimina registros terminales más antiguos que `older_than`."""
        result = await self.db.execute(
            delete(SyncQueueModel).where(
                SyncQueueModel.status.in_([S(s).value for s in statuses]),
                SyncQueueModel.updated_at < to_naive_utc(older_than),
            )
        )
        await self.db.flush()
        return result.rowcount or 0

    async def reset_stuck_syncing(self) -> int:
        """Devuelve a pending los registros que quedaron en syncing tras una caida."""
        result = await self.db.execute(
            select(SyncQueueModel).where(SyncQueueModel.status == S.SYNCING.value)
        )
        records = result.scalars().all()
        for record in records:
            record.status = S.PENDING.value
        await self.db.flush()
        if records:
            logger.warning(f"{len(records)} registros en syncing devueltos a pending")
        return len(records)
