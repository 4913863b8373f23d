"""
Configuración de fixtures para pytest.
"""
import json
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from pos_sync.infrastructure.database.local_store import LocalStore
from pos_sync.infrastructure.database.session import Base, create_session_factory
from pos_sync.infrastructure.database import models  # noqa: F401
from pos_sync.infrastructure.external.remote_sync.remote_client import RemoteSyncClient
from pos_sync.infrastructure.external.remote_sync.sync_config import SyncConfig


# URL de base de datos de prueba
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
REMOTE_URL = "https://remote.test/api"


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """
    Engine en memoria compartido por todas las conexiones del test
    (StaticPool), con las tablas del ledger y las tablas del POS.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    store = LocalStore(engine)
    await store.exec("CREATE TABLE products (id TEXT PRIMARY KEY, name TEXT, price REAL)")
    await store.exec(
        "CREATE TABLE inventory (id TEXT PRIMARY KEY, name TEXT, quantity INTEGER, unit_price REAL)"
    )

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Sesión de base de datos para tests de repositorios."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def local_store(db_engine) -> LocalStore:
    return LocalStore(db_engine)


@pytest.fixture
def make_config() -> Callable[..., SyncConfig]:
    """Fabrica de SyncConfig autenticado con valores chicos para tests."""

    def _make(**overrides: Any) -> SyncConfig:
        values = {
            "remote_base_url": REMOTE_URL,
            "api_key": "remote-token",
            "sync_interval_minutes": 30,
            "batch_size": 100,
            "retry_attempts": 3,
            "retry_delay_ms": 0,
        }
        values.update(overrides)
        return SyncConfig(**values)

    return _make


class FakeRemote:
    """
    Backend remoto simulado sobre httpx.MockTransport.

    - `routes` mapea (método, path) a una respuesta fija o a un callable
    - `changes` es el feed que retorna GET /sync/changes
    - `requests` registra cada request recibida
    """

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], Any] = {}
        self.changes: List[Dict[str, Any]] = []
        self.requests: List[httpx.Request] = []
        self.default_status = 200

    def set(self, method: str, path: str, response: Any) -> None:
        self.routes[(method, path)] = response

    def calls(self, method: Optional[str] = None) -> List[httpx.Request]:
        return [r for r in self.requests if method is None or r.method == method]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.startswith("/api"):
            path = path[len("/api"):]

        route = self.routes.get((request.method, path))
        if callable(route):
            route = route(request)
        if isinstance(route, Exception):
            raise route
        if isinstance(route, httpx.Response):
            return route
        if isinstance(route, int):
            return httpx.Response(route, json={"error": "simulated"})

        if request.method == "GET" and path == "/sync/changes":
            return httpx.Response(200, json={"data": self.changes})

        body = json.loads(request.content) if request.content else {}
        return httpx.Response(self.default_status, json={"data": body})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def fake_remote() -> FakeRemote:
    return FakeRemote()


@pytest_asyncio.fixture
async def make_client(fake_remote):
    """Fabrica de RemoteSyncClient sobre el backend simulado."""
    clients: List[RemoteSyncClient] = []

    def _make(config: SyncConfig) -> RemoteSyncClient:
        client = RemoteSyncClient(config, timeout_s=1.0, transport=fake_remote.transport)
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.aclose()
