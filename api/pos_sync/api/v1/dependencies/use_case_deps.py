"""
Dependencias para inyección de casos de uso.
"""
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from pos_sync.api.v1.dependencies.engine_deps import get_engine_db, get_sync_engine
from pos_sync.application.services.sync_engine import SyncEngine
from pos_sync.application.use_cases.sync_use_cases import SyncUseCases


async def get_sync_use_cases(
    db: AsyncSession = Depends(get_engine_db),
    engine: SyncEngine = Depends(get_sync_engine),
) -> SyncUseCases:
    """
    Dependencia para obtener los casos de uso de sincronización.

    Args:
        db: Sesión de base de datos
        engine: Motor de sincronización

    Returns:
        SyncUseCases: Instancia de casos de uso
    """
    return SyncUseCases(db, engine)
