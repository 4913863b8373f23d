"""
Gestión de sesiones del almacén local.
"""
from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    create_async_engine,
    async_sessionmaker
)
from sqlalchemy.orm import declarative_base

from pos_sync.core.config import settings


# Base para modelos de SQLAlchemy
Base = declarative_base()


def _create_engine_args(database_url: str) -> dict:
    """
    Construye los argumentos del engine según el tipo de base de datos.
    SQLite (almacén embebido) recibe además los pragmas de conexión.
    """
    args = {
        "echo": settings.DEBUG,
        "future": True,
    }

    if database_url.startswith("sqlite"):
        # El mismo engine se usa desde el scheduler y desde el canal realtime
        args["connect_args"] = {"check_same_thread": False}

    return args


SQLITE_BUSY_TIMEOUT_MS = 5000


def _set_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    """
    WAL deja leer mientras el scheduler escribe; busy_timeout espera el
    lock en vez de fallar con "database is locked".
    """
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine_for(database_url: str) -> AsyncEngine:
    """Crea un engine async para la URL indicada."""
    bind = create_async_engine(database_url, **_create_engine_args(database_url))
    if bind.dialect.name == "sqlite":
        event.listen(bind.sync_engine, "connect", _set_sqlite_pragmas)
    return bind


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    """Crea la fabrica de sesiones usada por los servicios del motor."""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False
    )


# Engine del almacén local
engine = create_engine_for(settings.DATABASE_URL)

# Session factory
AsyncSessionLocal = create_session_factory(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Generador de sesiones de base de datos.
    Para usar como dependencia en FastAPI.

    Yields:
        AsyncSession: Sesión de base de datos
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def _ensure_sqlite_dir(database_url: str) -> None:
    """Crea el directorio del archivo SQLite si no existe."""
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
        return
    Path(url.database).parent.mkdir(parents=True, exist_ok=True)


async def init_db(bind: AsyncEngine = None) -> None:
    """
    Inicializa la base de datos creando todas las tablas.
    Es idempotente: create_all solo crea las tablas que faltan.
    """
    bind = bind or engine
    _ensure_sqlite_dir(str(bind.url))
    # Registrar los modelos en Base.metadata
    from pos_sync.infrastructure.database import models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Cierra las conexiones de la base de datos."""
    await engine.dispose()
