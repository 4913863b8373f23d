"""
Tests de los endpoints de sincronización y conectividad.
"""
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from main import create_application
from pos_sync.api.v1.dependencies.auth_deps import get_auth
from pos_sync.api.v1.dependencies.engine_deps import get_sync_engine
from pos_sync.application.services.sync_engine import SyncEngine
from pos_sync.core import events
from pos_sync.core.config import Settings
from pos_sync.infrastructure.repositories.sync_conflict_repository import SyncConflictRepository
from pos_sync.infrastructure.repositories.sync_queue_repository import SyncQueueRepository
from pos_sync.infrastructure.security.static_token_auth import StaticTokenAuth
from pos_sync.shared.constants.sync_constants import SyncRecordStatus


ADMIN_HEADERS = {"Authorization": "Bearer admin-token"}


@pytest_asyncio.fixture
async def sync_engine(db_engine, session_factory, fake_remote):
    settings = Settings(
        _env_file=None,
        REMOTE_BASE_URL="https://remote.test/api",
        REMOTE_API_KEY="remote-token",
        REALTIME_ENABLED=False,
        HTTP_TIMEOUT_SECONDS=1.0,
    )
    engine = await SyncEngine.create(
        settings,
        db_engine,
        session_factory,
        transport=fake_remote.transport,
        scheduler=AsyncIOScheduler(timezone="UTC"),
    )
    engine.scheduler.start()
    yield engine
    await engine.stop()


@pytest_asyncio.fixture
async def client(sync_engine):
    """
    Cliente HTTP sobre la app sin eventos de startup: el motor y la auth
    se inyectan vía dependency_overrides (y app.state para /health).
    """
    app = create_application()
    app.dependency_overrides[get_sync_engine] = lambda: sync_engine
    app.dependency_overrides[get_auth] = lambda: StaticTokenAuth("admin-token")
    app.state.sync_engine = sync_engine
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://pos.local") as http:
        yield http


async def _open_conflict(session_factory):
    async with session_factory() as db:
        queue = SyncQueueRepository(db)
        queue_id = await queue.enqueue("products", "update", {"id": "5", "price": 10})
        await queue.mark_status(queue_id, SyncRecordStatus.SYNCING)
        await queue.mark_status(queue_id, SyncRecordStatus.CONFLICT)
        conflict = await SyncConflictRepository(db).create(
            table="products",
            record_id="5",
            local_data={"id": "5", "price": 10},
            remote_data={"id": "5", "price": 99},
        )
        await db.commit()
        return conflict.id


class TestAuth:
    """Tests de autenticación de la API local."""

    @pytest.mark.asyncio
    async def test_missing_token_is_rejected(self, client):
        response = await client.get("/api/v1/sync/status")

        assert response.status_code == 401
        assert response.json()["error"] == "UNAUTHORIZED"

    @pytest.mark.asyncio
    async def test_api_key_header_is_accepted(self, client):
        response = await client.get("/api/v1/sync/status", headers={"X-API-Key": "admin-token"})

        assert response.status_code == 200


class TestQueueEndpoints:
    """Tests de la cola de salida."""

    @pytest.mark.asyncio
    async def test_enqueue_and_list(self, client):
        response = await client.post(
            "/api/v1/sync/queue",
            json={"table": "products", "action": "update", "data": {"id": 5, "price": 10}},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 201
        queue_id = response.json()["id"]
        assert response.json()["status"] == "pending"

        listing = (await client.get("/api/v1/sync/queue", headers=ADMIN_HEADERS)).json()
        assert [r["id"] for r in listing["records"]] == [queue_id]
        assert listing["records"][0]["record_id"] == "5"
        assert listing["stats"]["pending"] == 1

        detail = await client.get(f"/api/v1/sync/queue/{queue_id}", headers=ADMIN_HEADERS)
        assert detail.json()["local_data"] == {"id": 5, "price": 10}

    @pytest.mark.asyncio
    async def test_invalid_action_is_rejected(self, client):
        response = await client.post(
            "/api/v1/sync/queue",
            json={"table": "products", "action": "upsert", "data": {"id": 5}},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_status_filter(self, client):
        response = await client.get("/api/v1/sync/queue?status=lost", headers=ADMIN_HEADERS)

        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_unknown_record(self, client):
        response = await client.get("/api/v1/sync/queue/nope", headers=ADMIN_HEADERS)

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_run_uploads_pending_records(self, client, fake_remote):
        await client.post(
            "/api/v1/sync/queue",
            json={"table": "products", "action": "update", "data": {"id": 5, "price": 10}},
            headers=ADMIN_HEADERS,
        )

        response = await client.post("/api/v1/sync/run", headers=ADMIN_HEADERS)

        body = response.json()
        assert response.status_code == 200
        assert body["accepted"] is True
        assert body["status"]["state"] == "idle"
        assert len(fake_remote.calls("PUT")) == 1

        status = (await client.get("/api/v1/sync/status", headers=ADMIN_HEADERS)).json()
        assert status["synced_records"] == 1
        assert status["last_sync"] is not None


class TestConflictEndpoints:
    """Tests de conflictos."""

    @pytest.mark.asyncio
    async def test_resolve_then_reject_second_resolution(self, client, session_factory, local_store):
        conflict_id = await _open_conflict(session_factory)

        listing = (await client.get("/api/v1/sync/conflicts", headers=ADMIN_HEADERS)).json()
        assert [c["id"] for c in listing] == [conflict_id]

        response = await client.post(
            f"/api/v1/sync/conflicts/{conflict_id}/resolve",
            json={"resolution": "remote"},
            headers=ADMIN_HEADERS,
        )
        assert response.status_code == 200
        assert response.json()["applied_data"] == {"id": "5", "price": 99}
        assert (await local_store.fetch_record("products", "5"))["price"] == 99

        again = await client.post(
            f"/api/v1/sync/conflicts/{conflict_id}/resolve",
            json={"resolution": "local"},
            headers=ADMIN_HEADERS,
        )
        assert again.status_code == 409
        assert again.json()["error"] == "CONFLICT_ALREADY_RESOLVED"

        resolved = (
            await client.get("/api/v1/sync/conflicts?include_resolved=true", headers=ADMIN_HEADERS)
        ).json()
        assert resolved[0]["resolved_by"] == "admin"


class TestConfigEndpoints:
    """Tests de la configuración en caliente."""

    @pytest.mark.asyncio
    async def test_get_hides_token(self, client):
        body = (await client.get("/api/v1/sync/config", headers=ADMIN_HEADERS)).json()

        assert body["api_key_configured"] is True
        assert "api_key" not in body
        assert "remote-token" not in str(body)

    @pytest.mark.asyncio
    async def test_update_applies_partial_changes(self, client, sync_engine):
        response = await client.put(
            "/api/v1/sync/config",
            json={"batch_size": 20, "conflict_resolution_policy": "manual"},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["batch_size"] == 20
        assert sync_engine.config.conflict_resolution_policy.value == "manual"
        assert sync_engine.config.retry_attempts == 3

    @pytest.mark.asyncio
    async def test_invalid_value_is_rejected(self, client, sync_engine):
        before = sync_engine.config

        response = await client.put(
            "/api/v1/sync/config", json={"batch_size": 0}, headers=ADMIN_HEADERS
        )

        assert response.status_code == 400
        assert sync_engine.config is before

    @pytest.mark.asyncio
    async def test_unknown_field_is_rejected(self, client):
        response = await client.put(
            "/api/v1/sync/config", json={"turbo": True}, headers=ADMIN_HEADERS
        )

        assert response.status_code == 422


class TestConnectionEndpoints:
    """Tests de conectividad."""

    @pytest.mark.asyncio
    async def test_refresh_reports_aggregate_signal(self, client, fake_remote):
        fake_remote.set("GET", "/shops/stats", 500)

        response = await client.post("/api/v1/connection/refresh", headers=ADMIN_HEADERS)

        body = response.json()
        assert response.status_code == 200
        assert body["status"]["overall"] is True
        assert body["status"]["endpoints"]["shop.stats"]["connected"] is False
        assert body["realtime"] is None

    @pytest.mark.asyncio
    async def test_health_reports_remote_signal(self, client):
        await client.post("/api/v1/connection/refresh", headers=ADMIN_HEADERS)

        body = (await client.get("/health")).json()

        assert body["status"] == "healthy"
        assert body["remote_connected"] is True


class TestLifespan:
    """Tests del ciclo de vida de la aplicación."""

    @pytest.mark.asyncio
    async def test_lifespan_runs_startup_then_shutdown(self, monkeypatch):
        calls = []
        monkeypatch.setattr(
            events, "startup_handler",
            lambda app: AsyncMock(side_effect=lambda: calls.append("startup")),
        )
        monkeypatch.setattr(
            events, "shutdown_handler",
            lambda app: AsyncMock(side_effect=lambda: calls.append("shutdown")),
        )
        app = create_application()

        async with app.router.lifespan_context(app):
            assert calls == ["startup"]

        assert calls == ["startup", "shutdown"]
