"""
Dependencias del motor de sincronización y de sesiones de base de datos.
"""
from typing import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from pos_sync.application.services.sync_engine import SyncEngine
from pos_sync.shared.exceptions.sync import ConfigurationError


def get_sync_engine(request: Request) -> SyncEngine:
    """
    Retorna el motor creado en el startup de la aplicación.

    Raises:
        ConfigurationError: Si el motor no fue inicializado
    """
    engine = getattr(request.app.state, "sync_engine", None)
    if engine is None:
        raise ConfigurationError("Motor de sincronización no inicializado")
    return engine


async def get_engine_db(
    engine: SyncEngine = Depends(get_sync_engine),
) -> AsyncGenerator[AsyncSession, None]:
    """
    Sesión de base de datos sobre el mismo almacén que usa el motor.
    Hace rollback si el endpoint falla.
    """
    async with engine.session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
