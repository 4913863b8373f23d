"""
Orquestador del ciclo de sincronización.

Un ciclo: subida -> descarga -> resolución de conflictos -> idle.

Reglas:
- A lo sumo un ciclo a la vez. Un disparo mientras hay un ciclo en curso
  se descarta con un warning (no se encola).
- Los errores por registro se guardan en la cola y en sync_log; nunca
  abortan el ciclo. Los errores de fase se acumulan en `errors` y el
  ciclo continúa con la fase siguiente.
- El ciclo usa el snapshot (config, cliente) tomado al empezar.
"""

from __future__ import annotations

import inspect
import time
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import async_sessionmaker

from pos_sync.application.services.conflict_resolver import ConflictResolver, diverges
from pos_sync.infrastructure.database.local_store import LocalStore
from pos_sync.infrastructure.database.models import SyncQueueModel
from pos_sync.infrastructure.external.remote_sync.remote_client import RemoteSyncClient
from pos_sync.infrastructure.external.remote_sync.sync_config import SyncConfig
from pos_sync.infrastructure.external.remote_sync.types import RemoteChange, Unauthenticated
from pos_sync.infrastructure.repositories.sync_conflict_repository import SyncConflictRepository
from pos_sync.infrastructure.repositories.sync_log_repository import SyncLogRepository
from pos_sync.infrastructure.repositories.sync_queue_repository import SyncQueueRepository
from pos_sync.shared.constants.sync_constants import (
    OrchestratorState,
    SyncAction,
    SyncDirection,
    SyncRecordStatus,
)
from pos_sync.shared.exceptions.sync import AuthenticationError, ConflictDetected, SyncError
from pos_sync.shared.utils.audit_logger import SyncAuditLogger
from pos_sync.shared.utils.datetime_utils import utc_now


@dataclass
class SyncStatus:
    """Estado observable del motor (lo que muestra la UI)."""

    is_running: bool = False
    state: OrchestratorState = OrchestratorState.IDLE
    last_sync: Optional[datetime] = None
    next_sync: Optional[datetime] = None
    total_records: int = 0
    synced_records: int = 0
    failed_records: int = 0
    conflict_records: int = 0
    dead_records: int = 0
    errors: list[str] = field(default_factory=list)
    current_operation: Optional[str] = None
    degraded: bool = False
    last_cycle_duration_ms: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


@dataclass(frozen=True)
class SyncRunResult:
    """Resultado de un disparo: accepted=False si ya había un ciclo en curso."""

    accepted: bool
    status: SyncStatus


class SyncOrchestrator:
    """
    Único mutador de estado del ledger.

    Uso:
        orchestrator = SyncOrchestrator(session_factory, store, config, client)
        result = await orchestrator.sync_now()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        local_store: LocalStore,
        config: SyncConfig,
        client: RemoteSyncClient,
        resolver: Optional[ConflictResolver] = None,
    ) -> None:
        self._session_factory = session_factory
        self._store = local_store
        self._runtime = (config, client)
        self._resolver = resolver or ConflictResolver(session_factory, local_store)
        self._is_running = False
        self._status = SyncStatus()
        self._cycle_listeners: list[Callable[[SyncStatus], Any]] = []

    # ------------------------------------------------------------------
    # Configuración y estado
    # ------------------------------------------------------------------

    @property
    def config(self) -> SyncConfig:
        return self._runtime[0]

    @property
    def client(self) -> RemoteSyncClient:
        return self._runtime[1]

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def resolver(self) -> ConflictResolver:
        return self._resolver

    def swap_runtime(self, config: SyncConfig, client: RemoteSyncClient) -> None:
        """Intercambia config y cliente en una sola asignación."""
        self._runtime = (config, client)

    def on_cycle_complete(self, listener: Callable[[SyncStatus], Any]) -> None:
        """Suscribe un callback(status) que corre al terminar cada ciclo."""
        self._cycle_listeners.append(listener)

    def get_status(self) -> SyncStatus:
        """Copia del estado (la lista de errores incluida)."""
        return replace(self._status, errors=list(self._status.errors))

    # ------------------------------------------------------------------
    # Ciclo
    # ------------------------------------------------------------------

    async def sync_now(self) -> SyncRunResult:
        """
        Ejecuta un ciclo si no hay otro en curso.

        El chequeo y el seteo del guard ocurren sin await entre medio,
        por lo que son atómicos dentro del event loop.
        """
        if self._is_running:
            logger.warning("Sync ya está corriendo. Disparo descartado.")
            return SyncRunResult(accepted=False, status=self.get_status())

        self._is_running = True
        self._status.is_running = True
        try:
            await self._run_cycle()
        finally:
            self._is_running = False
            self._status.is_running = False
            self._status.state = OrchestratorState.IDLE
            self._status.current_operation = None

        status = self.get_status()
        for listener in list(self._cycle_listeners):
            try:
                result = listener(status)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error en listener de fin de ciclo: {e}")
        return SyncRunResult(accepted=True, status=status)

    async def _run_cycle(self) -> None:
        config, client = self._runtime
        status = self._status
        started = time.perf_counter()
        cycle_started_at = utc_now()

        status.errors = []
        status.total_records = 0
        status.synced_records = 0
        status.failed_records = 0
        status.conflict_records = 0
        status.dead_records = 0
        status.degraded = not client.authenticated

        logger.info(
            f"Ciclo de sync iniciado (batch={config.batch_size}, "
            f"política={config.conflict_resolution_policy.value})"
        )

        status.state = OrchestratorState.UPLOADING
        status.current_operation = "Subiendo cambios locales"
        try:
            await self._upload_phase(config, client)
        except Exception as e:
            logger.error(f"Fase de subida falló: {e}")
            status.errors.append(f"Upload phase failed: {e}")

        status.state = OrchestratorState.DOWNLOADING
        status.current_operation = "Descargando cambios remotos"
        try:
            await self._download_phase(config, client, cycle_started_at)
        except Exception as e:
            logger.error(f"Fase de descarga falló: {e}")
            status.errors.append(f"Download phase failed: {e}")

        status.state = OrchestratorState.RESOLVING_CONFLICTS
        status.current_operation = "Resolviendo conflictos"
        try:
            summary = await self._resolver.process_unresolved(config.conflict_resolution_policy)
            status.errors.extend(summary.errors)
        except Exception as e:
            logger.error(f"Fase de conflictos falló: {e}")
            status.errors.append(f"Conflict resolution failed: {e}")

        status.last_sync = utc_now()
        status.last_cycle_duration_ms = int((time.perf_counter() - started) * 1000)

        SyncAuditLogger.log_cycle({
            "total": status.total_records,
            "synced": status.synced_records,
            "failed": status.failed_records,
            "conflicts": status.conflict_records,
            "dead": status.dead_records,
            "degraded": status.degraded,
            "duration_ms": status.last_cycle_duration_ms,
            "errors": status.errors,
        })
        if status.errors:
            logger.warning(f"Ciclo de sync terminado con {len(status.errors)} errores")
        else:
            logger.success(
                f"Ciclo de sync terminado: {status.synced_records}/{status.total_records} subidos "
                f"en {status.last_cycle_duration_ms} ms"
            )

    # ------------------------------------------------------------------
    # Subida
    # ------------------------------------------------------------------

    async def _upload_phase(self, config: SyncConfig, client: RemoteSyncClient) -> None:
        if not client.authenticated:
            # Modo degradado: los registros quedan pending sin cambios
            self._status.degraded = True
            logger.warning("Sin token remoto: subida omitida (modo local)")
            return

        async with self._session_factory() as db:
            records = await SyncQueueRepository(db).list_pending(
                config.batch_size,
                retry_attempts=config.retry_attempts,
                retry_delay_ms=config.retry_delay_ms,
            )
        self._status.total_records = len(records)

        for record in records:
            try:
                auth_failed = await self._upload_one(record, config, client)
            except Exception as e:
                # Falla del registro (p. ej. la base local bloqueada): el lote sigue
                label = f"{record.table_name}:{record.record_id}"
                logger.error(f"Error procesando registro {record.id} ({label}): {e}")
                self._status.failed_records += 1
                self._status.errors.append(f"Failed to sync {label} - {e}")
                await self._release_syncing(record, e)
                continue
            if auth_failed:
                self._status.degraded = True
                logger.warning("Token remoto rechazado: se detiene la subida de este ciclo")
                break

    async def _release_syncing(self, record: SyncQueueModel, error: Exception) -> None:
        """Saca de syncing un registro cuyo procesamiento falló (mejor esfuerzo)."""
        try:
            async with self._session_factory() as db:
                queue = SyncQueueRepository(db)
                current = await queue.get(record.id)
                if current is None or current.status != SyncRecordStatus.SYNCING.value:
                    return
                await queue.mark_status(
                    record.id,
                    SyncRecordStatus.FAILED,
                    str(error) or type(error).__name__,
                    increment_retry=True,
                    retryable=True,
                )
                await db.commit()
        except Exception as e:
            logger.error(
                f"No se pudo liberar el registro {record.id}; queda en syncing hasta el reinicio: {e}"
            )

    async def _upload_one(
        self, record: SyncQueueModel, config: SyncConfig, client: RemoteSyncClient
    ) -> bool:
        """
        Sube un registro y registra el resultado.

        Returns:
            bool: True si el backend rechazo el token
        """
        previous = record.status
        async with self._session_factory() as db:
            await SyncQueueRepository(db).mark_status(record.id, SyncRecordStatus.SYNCING)
            await db.commit()

        started = time.perf_counter()
        result = None
        conflict: Optional[ConflictDetected] = None
        error: Optional[Exception] = None
        try:
            result = await client.upload(record)
        except ConflictDetected as e:
            conflict = e
        except Exception as e:
            error = e
        duration_ms = int((time.perf_counter() - started) * 1000)

        async with self._session_factory() as db:
            queue = SyncQueueRepository(db)
            log = SyncLogRepository(db)

            if isinstance(result, Unauthenticated):
                await queue.mark_status(record.id, SyncRecordStatus.PENDING)
                await db.commit()
                return False

            if conflict is not None:
                await queue.mark_status(record.id, SyncRecordStatus.CONFLICT, remote_data=conflict.remote_data)
                await SyncConflictRepository(db).create(
                    table=record.table_name,
                    record_id=record.record_id,
                    local_data=record.local_data,
                    remote_data=conflict.remote_data,
                )
                new_status = SyncRecordStatus.CONFLICT
            elif error is None:
                await queue.mark_status(record.id, SyncRecordStatus.SYNCED, remote_data=result.data)
                new_status = SyncRecordStatus.SYNCED
            else:
                new_status = await self._record_failure(queue, record, error, config)

            await log.append(
                table=record.table_name,
                record_id=record.record_id,
                action=record.action,
                status=new_status.value,
                direction=SyncDirection.OUTBOUND,
                sync_id=record.id,
                error=str(error) if error else None,
                duration_ms=duration_ms,
            )
            await db.commit()

        if new_status == SyncRecordStatus.SYNCED:
            self._status.synced_records += 1
        elif new_status == SyncRecordStatus.CONFLICT:
            self._status.conflict_records += 1

        SyncAuditLogger.log_transition(
            record.table_name, record.record_id, record.action, previous, new_status.value,
            error=str(error) if error else None,
        )
        return isinstance(error, AuthenticationError)

    async def _record_failure(
        self,
        queue: SyncQueueRepository,
        record: SyncQueueModel,
        error: Exception,
        config: SyncConfig,
    ) -> SyncRecordStatus:
        """
        Decide el estado de un registro fallido.

        - AuthenticationError: failed reintentable, sin consumir intentos
        - errores reintentables: failed, o dead al agotar retry_attempts
        - el resto: failed no reintentable (solo reencolado manual)
        """
        message = str(error) or type(error).__name__
        label = f"{record.table_name}:{record.record_id}"

        if isinstance(error, AuthenticationError):
            await queue.mark_status(record.id, SyncRecordStatus.FAILED, message, retryable=True)
            self._status.failed_records += 1
            self._status.errors.append(f"Failed to sync {label} - {message}")
            return SyncRecordStatus.FAILED

        retryable = error.retryable if isinstance(error, SyncError) else True
        if retryable and (record.retry_count or 0) + 1 >= config.retry_attempts:
            await queue.mark_status(
                record.id, SyncRecordStatus.DEAD, message, increment_retry=True, retryable=True
            )
            self._status.dead_records += 1
            self._status.errors.append(f"Failed to sync {label} - {message} (reintentos agotados)")
            logger.error(f"Registro {record.id} ({label}) agoto sus reintentos: {message}")
            return SyncRecordStatus.DEAD

        await queue.mark_status(
            record.id, SyncRecordStatus.FAILED, message, increment_retry=True, retryable=retryable
        )
        self._status.failed_records += 1
        self._status.errors.append(f"Failed to sync {label} - {message}")
        return SyncRecordStatus.FAILED

    # ------------------------------------------------------------------
    # Descarga
    # ------------------------------------------------------------------

    async def _download_phase(
        self, config: SyncConfig, client: RemoteSyncClient, cycle_started_at: datetime
    ) -> None:
        if not client.authenticated:
            return

        async with self._session_factory() as db:
            since = await SyncLogRepository(db).last_synced_at()

        batch = await client.download(since, config.batch_size)
        if len(batch):
            logger.info(f"{len(batch)} cambios remotos recibidos")

        for change in batch:
            try:
                await self._apply_change(change, cycle_started_at)
            except Exception as e:
                logger.error(f"Error aplicando cambio remoto {change.table}:{change.record_id}: {e}")
                self._status.errors.append(
                    f"Failed to apply remote change {change.table}:{change.record_id} - {e}"
                )

    async def _apply_change(self, change: RemoteChange, cycle_started_at: datetime) -> None:
        """Aplica un cambio remoto, o lo deriva a conflicto si choca con uno local."""
        remote_data = None if change.action == SyncAction.DELETE.value else change.data

        async with self._session_factory() as db:
            queue = SyncQueueRepository(db)
            open_records = await queue.list_open_for(change.table, change.record_id)
            local = open_records[-1] if open_records else await queue.latest_synced_since(
                change.table, change.record_id, cycle_started_at
            )

            if local is not None:
                local_data = None if local.action == SyncAction.DELETE.value else local.local_data
                if diverges(local_data, remote_data):
                    for record in open_records:
                        if record.status != SyncRecordStatus.CONFLICT.value:
                            await queue.mark_status(
                                record.id, SyncRecordStatus.CONFLICT, "Cambio remoto en conflicto"
                            )
                    conflicts = SyncConflictRepository(db)
                    # Un cambio reentregado no abre un segundo conflicto
                    if not await conflicts.has_open_conflict(change.table, change.record_id):
                        await conflicts.create(
                            table=change.table,
                            record_id=change.record_id,
                            local_data=local.local_data,
                            remote_data=remote_data,
                        )
                    await SyncLogRepository(db).append(
                        table=change.table,
                        record_id=change.record_id,
                        action=change.action,
                        status=SyncRecordStatus.CONFLICT.value,
                        direction=SyncDirection.INBOUND,
                        sync_id=local.id,
                    )
                    await db.commit()
                    self._status.conflict_records += 1
                    SyncAuditLogger.log_transition(
                        change.table, change.record_id, change.action, "remote", "conflict"
                    )
                    return

        started = time.perf_counter()
        if change.action == SyncAction.DELETE.value:
            await self._store.delete_record(change.table, change.record_id)
        else:
            await self._store.upsert_record(change.table, change.record_id, change.data)
        duration_ms = int((time.perf_counter() - started) * 1000)

        async with self._session_factory() as db:
            await SyncLogRepository(db).append(
                table=change.table,
                record_id=change.record_id,
                action=change.action,
                status=SyncRecordStatus.SYNCED.value,
                direction=SyncDirection.INBOUND,
                duration_ms=duration_ms,
            )
            await db.commit()
        SyncAuditLogger.log_transition(change.table, change.record_id, change.action, "remote", "synced")
