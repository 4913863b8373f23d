"""
Tests del orquestador del ciclo de sincronización.
"""
import asyncio
import json

import pytest
from sqlalchemy import select

from pos_sync.application.services.sync_orchestrator import SyncOrchestrator
from pos_sync.infrastructure.database.models import SyncConflictModel, SyncLogModel
from pos_sync.infrastructure.external.remote_sync.types import ChangeBatch, RemoteResult
from pos_sync.infrastructure.repositories.sync_log_repository import SyncLogRepository
from pos_sync.infrastructure.repositories.sync_queue_repository import SyncQueueRepository
from pos_sync.shared.constants.sync_constants import ConflictPolicy, OrchestratorState


async def _enqueue(session_factory, table, action, payload, record_id=None):
    async with session_factory() as db:
        queue_id = await SyncQueueRepository(db).enqueue(table, action, payload, record_id)
        await db.commit()
    return queue_id


async def _get(session_factory, queue_id):
    async with session_factory() as db:
        return await SyncQueueRepository(db).get(queue_id)


async def _all(session_factory, model):
    async with session_factory() as db:
        result = await db.execute(select(model).order_by(model.id))
        return list(result.scalars().all())


@pytest.fixture
def make_orchestrator(session_factory, local_store, make_client, make_config):
    def _make(**config_overrides):
        config = make_config(**config_overrides)
        return SyncOrchestrator(session_factory, local_store, config, make_client(config))

    return _make


class TestUploadPhase:
    """Tests de la subida de la cola."""

    @pytest.mark.asyncio
    async def test_offline_edit_is_uploaded_when_token_arrives(
        self, session_factory, local_store, make_client, make_config, fake_remote
    ):
        """
        Sin token el registro queda pending; al configurar el token el
        siguiente ciclo lo sube y deja una entrada en sync_log.
        """
        offline = make_config(api_key="")
        orchestrator = SyncOrchestrator(session_factory, local_store, offline, make_client(offline))
        queue_id = await _enqueue(session_factory, "products", "update", {"id": 5, "price": 10})

        result = await orchestrator.sync_now()

        assert result.accepted is True
        assert result.status.degraded is True
        assert (await _get(session_factory, queue_id)).status == "pending"
        assert fake_remote.requests == []

        online = make_config()
        orchestrator.swap_runtime(online, make_client(online))
        result = await orchestrator.sync_now()

        record = await _get(session_factory, queue_id)
        assert record.status == "synced"
        assert result.status.synced_records == 1
        assert result.status.degraded is False
        assert [r.method for r in fake_remote.calls("PUT")] == ["PUT"]

        logs = await _all(session_factory, SyncLogModel)
        assert [(l.record_id, l.action, l.direction, l.status) for l in logs] == [
            ("5", "update", "outbound", "synced")
        ]
        assert logs[0].sync_id == queue_id

    @pytest.mark.asyncio
    async def test_batch_size_limits_upload_in_fifo_order(self, session_factory, make_orchestrator, fake_remote):
        ids = [await _enqueue(session_factory, "products", "update", {"id": i}) for i in range(5)]
        orchestrator = make_orchestrator(batch_size=2)

        result = await orchestrator.sync_now()

        assert result.status.total_records == 2
        assert [r.url.path for r in fake_remote.calls("PUT")] == ["/api/v1/parts/0", "/api/v1/parts/1"]
        assert (await _get(session_factory, ids[2])).status == "pending"

    @pytest.mark.asyncio
    async def test_transient_failures_end_in_dead(self, session_factory, make_orchestrator, fake_remote):
        """Con retry_attempts=2 el registro se intenta dos veces y queda dead."""
        fake_remote.set("PUT", "/v1/parts/5", 503)
        queue_id = await _enqueue(session_factory, "products", "update", {"id": 5})
        orchestrator = make_orchestrator(retry_attempts=2)

        first = await orchestrator.sync_now()
        record = await _get(session_factory, queue_id)
        assert record.status == "failed"
        assert record.retry_count == 1
        assert first.status.failed_records == 1
        assert "Failed to sync products:5" in first.status.errors[0]

        second = await orchestrator.sync_now()
        record = await _get(session_factory, queue_id)
        assert record.status == "dead"
        assert record.retry_count == 2
        assert second.status.dead_records == 1

        await orchestrator.sync_now()
        assert len(fake_remote.calls("PUT")) == 2

    @pytest.mark.asyncio
    async def test_validation_failure_is_not_retried(self, session_factory, make_orchestrator, fake_remote):
        fake_remote.set("PUT", "/v1/parts/5", 422)
        queue_id = await _enqueue(session_factory, "products", "update", {"id": 5})
        orchestrator = make_orchestrator()

        await orchestrator.sync_now()
        await orchestrator.sync_now()

        record = await _get(session_factory, queue_id)
        assert record.status == "failed"
        assert record.retryable is False
        assert len(fake_remote.calls("PUT")) == 1

    @pytest.mark.asyncio
    async def test_unmapped_table_fails_fast(self, session_factory, make_orchestrator):
        queue_id = await _enqueue(session_factory, "unknown_table", "create", {"id": 1})
        orchestrator = make_orchestrator()

        result = await orchestrator.sync_now()

        record = await _get(session_factory, queue_id)
        assert record.status == "failed"
        assert record.retryable is False
        assert "unknown_table" in record.error_message
        assert result.status.failed_records == 1

    @pytest.mark.asyncio
    async def test_rejected_token_stops_upload_without_consuming_retries(
        self, session_factory, make_orchestrator, fake_remote
    ):
        fake_remote.set("PUT", "/v1/parts/1", 401)
        first = await _enqueue(session_factory, "products", "update", {"id": 1})
        second = await _enqueue(session_factory, "products", "update", {"id": 2})
        orchestrator = make_orchestrator()

        result = await orchestrator.sync_now()

        failed = await _get(session_factory, first)
        assert failed.status == "failed"
        assert failed.retry_count == 0
        assert (await _get(session_factory, second)).status == "pending"
        assert result.status.degraded is True
        assert len(fake_remote.calls("PUT")) == 1

    @pytest.mark.asyncio
    async def test_create_conflict_blocks_record_under_manual_policy(
        self, session_factory, make_orchestrator, fake_remote
    ):
        import httpx

        fake_remote.set("POST", "/v1/parts", httpx.Response(409, json={"data": {"id": 5, "price": 99}}))
        queue_id = await _enqueue(session_factory, "products", "create", {"id": 5, "price": 10})
        orchestrator = make_orchestrator(conflict_resolution_policy=ConflictPolicy.MANUAL)

        result = await orchestrator.sync_now()
        await orchestrator.sync_now()

        record = await _get(session_factory, queue_id)
        assert record.status == "conflict"
        assert record.remote_data == {"id": 5, "price": 99}
        assert result.status.conflict_records == 1

        conflicts = await _all(session_factory, SyncConflictModel)
        assert len(conflicts) == 1
        assert conflicts[0].resolution is None
        # El registro bloqueado no se vuelve a subir
        assert len(fake_remote.calls("POST")) == 1

    @pytest.mark.asyncio
    async def test_create_conflict_resolved_locally_requeues_update(
        self, session_factory, make_orchestrator, fake_remote
    ):
        import httpx

        fake_remote.set("POST", "/v1/parts", httpx.Response(409, json={"data": {"id": 5, "price": 99}}))
        queue_id = await _enqueue(session_factory, "products", "create", {"id": 5, "price": 10})
        orchestrator = make_orchestrator(conflict_resolution_policy=ConflictPolicy.LOCAL)

        await orchestrator.sync_now()

        conflicts = await _all(session_factory, SyncConflictModel)
        assert conflicts[0].resolution == "local"
        assert conflicts[0].resolved_by == "system"
        assert (await _get(session_factory, queue_id)).status == "synced"

        async with session_factory() as db:
            pending = await SyncQueueRepository(db).list_pending(10)
        assert [(r.action, r.local_data) for r in pending] == [("update", {"id": 5, "price": 10})]

        # El siguiente ciclo sube la version local
        await orchestrator.sync_now()
        put = fake_remote.calls("PUT")[0]
        assert put.url.path == "/api/v1/parts/5"

    @pytest.mark.asyncio
    async def test_bookkeeping_failure_does_not_block_batch(
        self, session_factory, make_orchestrator, fake_remote, monkeypatch
    ):
        """Si falla el registro en sync_log de un item, el resto del lote sigue."""
        original_append = SyncLogRepository.append

        async def locked_for_first(self, **kwargs):
            if kwargs.get("record_id") == "1":
                raise RuntimeError("database is locked")
            return await original_append(self, **kwargs)

        monkeypatch.setattr(SyncLogRepository, "append", locked_for_first)
        first_id = await _enqueue(session_factory, "products", "update", {"id": 1, "price": 10})
        second_id = await _enqueue(session_factory, "products", "update", {"id": 2, "price": 20})

        result = await make_orchestrator().sync_now()

        first = await _get(session_factory, first_id)
        assert first.status == "failed"
        assert first.retry_count == 1
        assert first.retryable is True
        assert (await _get(session_factory, second_id)).status == "synced"
        assert result.status.synced_records == 1
        assert result.status.failed_records == 1
        assert any("products:1" in e and "database is locked" in e for e in result.status.errors)
        assert len(fake_remote.calls("PUT")) == 2


class TestDownloadPhase:
    """Tests de la bajada de cambios remotos."""

    @pytest.mark.asyncio
    async def test_remote_change_is_applied_locally(self, session_factory, local_store, make_orchestrator, fake_remote):
        fake_remote.changes = [
            {"table": "products", "action": "create", "record_id": "7",
             "data": {"id": "7", "name": "Bujia", "price": 3.5}},
        ]
        orchestrator = make_orchestrator()

        result = await orchestrator.sync_now()

        assert result.status.errors == []
        assert await local_store.fetch_record("products", "7") == {"id": "7", "name": "Bujia", "price": 3.5}
        logs = await _all(session_factory, SyncLogModel)
        assert [(l.direction, l.status, l.record_id) for l in logs] == [("inbound", "synced", "7")]

    @pytest.mark.asyncio
    async def test_cursor_advances_after_download(self, session_factory, make_orchestrator, fake_remote):
        fake_remote.changes = [
            {"table": "products", "action": "update", "record_id": "7", "data": {"price": 1}},
        ]
        orchestrator = make_orchestrator()

        await orchestrator.sync_now()
        fake_remote.changes = []
        await orchestrator.sync_now()

        first, second = fake_remote.calls("GET")
        assert first.url.params["since"] == "1970-01-01T00:00:00Z"
        assert second.url.params["since"] != "1970-01-01T00:00:00Z"

    @pytest.mark.asyncio
    async def test_remote_delete_removes_local_row(self, local_store, make_orchestrator, fake_remote):
        await local_store.insert_record("products", {"id": "7", "name": "Bujia", "price": 3.5})
        fake_remote.changes = [{"table": "products", "action": "delete", "record_id": "7"}]

        await make_orchestrator().sync_now()

        assert await local_store.fetch_record("products", "7") is None

    @pytest.mark.asyncio
    async def test_echo_of_own_upload_is_not_a_conflict(self, session_factory, make_orchestrator, fake_remote):
        await _enqueue(session_factory, "products", "update", {"id": "5", "price": 10})
        fake_remote.changes = [
            {"table": "products", "action": "update", "record_id": "5",
             "data": {"id": "5", "price": 10, "name": "Filtro"}},
        ]

        result = await make_orchestrator().sync_now()

        assert result.status.conflict_records == 0
        assert await _all(session_factory, SyncConflictModel) == []

    @pytest.mark.asyncio
    async def test_remote_change_over_open_local_edit_is_a_conflict(
        self, session_factory, local_store, make_orchestrator, fake_remote
    ):
        """Un cambio remoto no pisa una edición local sin subir."""
        fake_remote.set("PUT", "/v1/parts/5", 503)
        await local_store.insert_record("products", {"id": "5", "name": "Filtro", "price": 10})
        queue_id = await _enqueue(session_factory, "products", "update", {"id": "5", "price": 10})
        fake_remote.changes = [
            {"table": "products", "action": "update", "record_id": "5", "data": {"id": "5", "price": 99}},
        ]
        orchestrator = make_orchestrator(conflict_resolution_policy=ConflictPolicy.MANUAL)

        result = await orchestrator.sync_now()
        # Reentregar el mismo cambio no abre otro conflicto
        await orchestrator.sync_now()

        assert result.status.conflict_records == 1
        assert (await local_store.fetch_record("products", "5"))["price"] == 10
        assert (await _get(session_factory, queue_id)).status == "conflict"

        conflicts = await _all(session_factory, SyncConflictModel)
        assert len(conflicts) == 1
        assert conflicts[0].local_data == {"id": "5", "price": 10}
        assert conflicts[0].remote_data == {"id": "5", "price": 99}

    @pytest.mark.asyncio
    async def test_local_policy_keeps_local_edit_over_remote_change(
        self, session_factory, local_store, make_orchestrator, fake_remote
    ):
        """Con política local gana la edición pendiente y se reencola para el remoto."""
        fake_remote.set("PUT", "/v1/parts/5", 503)
        await local_store.insert_record("products", {"id": "5", "name": "Filtro", "price": 100})
        queue_id = await _enqueue(session_factory, "products", "update", {"id": "5", "price": 100})
        fake_remote.changes = [
            {"table": "products", "action": "update", "record_id": "5", "data": {"id": "5", "price": 120}},
        ]
        orchestrator = make_orchestrator(conflict_resolution_policy=ConflictPolicy.LOCAL)

        result = await orchestrator.sync_now()

        assert result.status.conflict_records == 1
        assert (await local_store.fetch_record("products", "5"))["price"] == 100
        assert (await _get(session_factory, queue_id)).status == "synced"

        conflicts = await _all(session_factory, SyncConflictModel)
        assert len(conflicts) == 1
        assert conflicts[0].resolution == "local"
        assert conflicts[0].resolved_by == "system"
        assert conflicts[0].local_data == {"id": "5", "price": 100}
        assert conflicts[0].remote_data == {"id": "5", "price": 120}

        async with session_factory() as db:
            pending = await SyncQueueRepository(db).list_pending(10)
        assert [(r.action, r.local_data) for r in pending] == [("update", {"id": "5", "price": 100})]

        # El siguiente ciclo sube la version local al remoto
        fake_remote.routes.clear()
        fake_remote.changes = []
        await orchestrator.sync_now()
        last_put = fake_remote.calls("PUT")[-1]
        assert last_put.url.path == "/api/v1/parts/5"
        assert json.loads(last_put.content)["price"] == 100


class TestSingleFlight:
    """Tests del guard de un ciclo a la vez."""

    @pytest.mark.asyncio
    async def test_concurrent_trigger_is_rejected(self, session_factory, local_store, make_config):
        release = asyncio.Event()
        started = asyncio.Event()

        class SlowClient:
            authenticated = True

            async def upload(self, record):
                started.set()
                await release.wait()
                return RemoteResult(status_code=200, data={})

            async def download(self, since, limit):
                return ChangeBatch(changes=[])

        await _enqueue(session_factory, "products", "update", {"id": 1})
        orchestrator = SyncOrchestrator(session_factory, local_store, make_config(), SlowClient())

        first = asyncio.create_task(orchestrator.sync_now())
        await started.wait()

        assert orchestrator.is_running is True
        assert orchestrator.get_status().state == OrchestratorState.UPLOADING
        second = await orchestrator.sync_now()
        assert second.accepted is False

        release.set()
        result = await first
        assert result.accepted is True
        assert result.status.synced_records == 1
        assert orchestrator.is_running is False
        assert orchestrator.get_status().state == OrchestratorState.IDLE

    @pytest.mark.asyncio
    async def test_failing_phase_does_not_abort_cycle(self, session_factory, local_store, make_config):
        class BrokenDownloadClient:
            authenticated = True

            async def upload(self, record):
                return RemoteResult(status_code=200, data={})

            async def download(self, since, limit):
                raise RuntimeError("feed caido")

        queue_id = await _enqueue(session_factory, "products", "update", {"id": 1})
        orchestrator = SyncOrchestrator(session_factory, local_store, make_config(), BrokenDownloadClient())

        result = await orchestrator.sync_now()

        assert result.accepted is True
        assert (await _get(session_factory, queue_id)).status == "synced"
        assert any("Download phase failed" in e for e in result.status.errors)
        assert result.status.last_sync is not None
