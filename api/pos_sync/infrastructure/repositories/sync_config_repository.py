"""
Repositorio para la configuración persistida del motor (sync_config).
"""
from typing import Any, Dict, Mapping

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pos_sync.infrastructure.database.models import SyncConfigModel


class SyncConfigRepository:
    """
    Gestiona la tabla sync_config (clave/valor en texto).
    El tipado de cada valor lo decide SyncConfig.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_all(self) -> Dict[str, str]:
        """Obtiene toda la configuración como un diccionario."""
        result = await self.db.execute(select(SyncConfigModel))
        rows = result.scalars().all()
        return {r.key: r.value for r in rows}

    async def set_value(self, key: str, value: Any) -> None:
        """Crea o actualiza una clave."""
        existing = await self.db.get(SyncConfigModel, key)
        stored = None if value is None else str(value)

        if existing:
            existing.value = stored
        else:
            self.db.add(SyncConfigModel(key=key, value=stored))

        await self.db.flush()
        if key == "api_key":
            logger.info("Configuración 'api_key' actualizada")
        else:
            logger.info(f"Configuración '{key}' actualizada a: {stored}")

    async def set_many(self, values: Mapping[str, Any]) -> None:
        for key, value in values.items():
            await self.set_value(key, value)
