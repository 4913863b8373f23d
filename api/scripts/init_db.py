"""
Script para inicializar el almacén local (crea las tablas del ledger).
"""
import asyncio
from loguru import logger

from pos_sync.infrastructure.database.session import close_db, init_db


async def main():
    """Función principal para inicializar la base de datos."""
    logger.info("Inicializando almacén local...")

    try:
        await init_db()
        logger.success("Almacén local inicializado correctamente")
    except Exception as e:
        logger.error(f"Error al inicializar base de datos: {e}")
        raise
    finally:
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
