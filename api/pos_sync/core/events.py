"""
Manejadores de eventos de inicio y cierre de la aplicación.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from fastapi import FastAPI
from loguru import logger

from pos_sync.application.services.sync_engine import SyncEngine
from pos_sync.core.config import settings
from pos_sync.infrastructure.database.session import AsyncSessionLocal, close_db, engine, init_db
from pos_sync.infrastructure.security.static_token_auth import StaticTokenAuth
from pos_sync.shared.utils.audit_logger import SyncAuditLogger


def startup_handler(app: FastAPI) -> Callable:
    """
    Manejador de eventos de inicio de la aplicación.

    Args:
        app: Instancia de FastAPI

    Returns:
        Callable: Función asíncrona de inicio
    """
    async def startup() -> None:
        """Inicializa recursos al inicio de la aplicación."""
        try:
            logger.info(f"Iniciando {settings.APP_NAME} v{settings.APP_VERSION}")
            logger.info(f"Entorno: {settings.ENVIRONMENT}")

            logger.add(
                settings.LOG_FILE,
                rotation="50 MB",
                retention="10 days",
                level=settings.LOG_LEVEL
            )

            _validate_config()

            # Inicializar almacén local (crea tablas si no existen)
            await init_db()
            logger.info("Almacén local inicializado")

            SyncAuditLogger.initialize()
            logger.info("Log de auditoria de sync inicializado")

            app.state.auth = StaticTokenAuth(settings.ADMIN_TOKEN)

            sync_engine = await SyncEngine.create(settings, engine, AsyncSessionLocal)
            await sync_engine.start()
            app.state.sync_engine = sync_engine

            logger.success("Aplicación iniciada correctamente")
            _print_available_urls()

        except Exception as e:
            logger.error(f"Error durante startup: {e}")
            logger.exception("Detalle del error:")
            raise

    return startup


def _validate_config() -> None:
    """Valida que la configuración crítica esté presente."""
    warnings = []

    if not settings.REMOTE_API_KEY:
        warnings.append("REMOTE_API_KEY no configurada - solo se encolaran cambios locales")
    if not settings.ADMIN_TOKEN:
        warnings.append("ADMIN_TOKEN no configurado - la API local queda abierta")
    if settings.REALTIME_ENABLED and not settings.SHOP_ID:
        warnings.append("SHOP_ID no configurado - canal realtime deshabilitado")

    for warning in warnings:
        logger.warning(f"CONFIG: {warning}")


def _print_available_urls() -> None:
    """Imprime las URLs disponibles de la aplicación."""
    access_host = "localhost" if settings.HOST == "0.0.0.0" else settings.HOST
    base_url = f"http://{access_host}:{settings.PORT}"

    logger.opt(colors=True).info("<bold><green>" + "=" * 80 + "</green></bold>")
    logger.opt(colors=True).info("<bold><green>URLS DISPONIBLES:</green></bold>")
    logger.opt(colors=True).info(f"<cyan>  Swagger UI:  {base_url}/docs</cyan>")
    logger.opt(colors=True).info(f"<cyan>  Sync status: {base_url}/api/v1/sync/status</cyan>")
    logger.opt(colors=True).info(f"<cyan>  Health:      {base_url}/health</cyan>")
    logger.opt(colors=True).info("<bold><green>" + "=" * 80 + "</green></bold>")


def shutdown_handler(app: FastAPI) -> Callable:
    """
    Manejador de eventos de cierre de la aplicación.

    Args:
        app: Instancia de FastAPI

    Returns:
        Callable: Función asíncrona de cierre
    """
    async def shutdown() -> None:
        """Libera recursos al cerrar la aplicación."""
        logger.info("Cerrando aplicación...")

        sync_engine = getattr(app.state, "sync_engine", None)
        if sync_engine is not None:
            await sync_engine.stop()
            app.state.sync_engine = None

        SyncAuditLogger.shutdown()

        await close_db()
        logger.info("Conexiones de base de datos cerradas")

        logger.success("Aplicación cerrada correctamente")

    return shutdown


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Ciclo de vida de la aplicación: startup antes de servir, shutdown al cerrar.

    Args:
        app: Instancia de FastAPI
    """
    await startup_handler(app)()
    try:
        yield
    finally:
        await shutdown_handler(app)()
