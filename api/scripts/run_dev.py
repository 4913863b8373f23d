"""
Levanta la API local del motor de sincronización con recarga automática.

Uso:
    python scripts/run_dev.py

El scheduler y el canal realtime arrancan en el lifespan de la app, por lo
que cada recarga reinicia el motor completo contra el mismo almacén local.
"""
import uvicorn
from loguru import logger

from pos_sync.core.config import settings


def main() -> None:
    logger.info(
        f"API de sync en http://{settings.HOST}:{settings.PORT}/api/v1 "
        f"(almacén: {settings.DATABASE_URL}, remoto: {settings.REMOTE_BASE_URL})"
    )
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=True,
        reload_dirs=["pos_sync"],
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
