"""
Ejecuta un único ciclo de sincronización sin levantar la API.

Uso:
    python scripts/sync_once.py
"""
import asyncio
import json

from loguru import logger

from pos_sync.application.services.sync_engine import SyncEngine
from pos_sync.core.config import settings
from pos_sync.infrastructure.database.session import AsyncSessionLocal, close_db, engine, init_db
from pos_sync.shared.utils.audit_logger import SyncAuditLogger


async def main():
    await init_db()
    SyncAuditLogger.initialize()

    sync_engine = await SyncEngine.create(settings, engine, AsyncSessionLocal)
    try:
        result = await sync_engine.sync_now()
        logger.info(json.dumps(result.status.to_dict(), default=str, indent=2))
    finally:
        await sync_engine.orchestrator.client.aclose()
        SyncAuditLogger.shutdown()
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
