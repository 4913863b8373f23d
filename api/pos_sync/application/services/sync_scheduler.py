"""
Scheduler del ciclo de sincronización (APScheduler).

Un único job `sync_cycle` dispara el orquestador cada
`sync_interval_minutes`. Reconfigurar reemplaza el job en una sola llamada
(replace_existing), sin ventana de doble disparo.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from pos_sync.application.services.sync_orchestrator import SyncOrchestrator, SyncRunResult
from pos_sync.infrastructure.external.remote_sync.sync_config import SyncConfig


SYNC_JOB_ID = "sync_cycle"


class SyncScheduler:
    """Dispara el orquestador por intervalo y bajo demanda."""

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        config: SyncConfig,
        scheduler: Optional[AsyncIOScheduler] = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._config = config
        self._scheduler = scheduler or AsyncIOScheduler(timezone="UTC")

    @property
    def scheduler(self) -> AsyncIOScheduler:
        return self._scheduler

    def start(self) -> None:
        """Arranca APScheduler e instala el job si el auto-sync está activo."""
        if not self._scheduler.running:
            self._scheduler.start()
        self._install(self._config)

    def stop(self) -> None:
        """Quita el job. Un ciclo en curso termina normalmente."""
        if self._scheduler.get_job(SYNC_JOB_ID):
            self._scheduler.remove_job(SYNC_JOB_ID)
            logger.info("Scheduler de sync detenido")

    def shutdown(self) -> None:
        """Detiene APScheduler (cierre de la aplicación)."""
        self.stop()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    def reconfigure(self, config: SyncConfig) -> None:
        """Reinstala (o quita) el job con la nueva configuración."""
        self._config = config
        self._install(config)

    def _install(self, config: SyncConfig) -> None:
        if not config.auto_sync_enabled:
            self.stop()
            logger.info("Auto-sync deshabilitado")
            return

        self._scheduler.add_job(
            self._tick,
            trigger=IntervalTrigger(minutes=config.sync_interval_minutes),
            id=SYNC_JOB_ID,
            name="Ciclo de sincronización",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info(f"Auto-sync programado cada {config.sync_interval_minutes} min")

    async def _tick(self) -> None:
        try:
            await self._orchestrator.sync_now()
        except Exception as e:
            logger.error(f"Error en ciclo programado de sync: {e}")
            logger.exception("Detalle del error:")

    async def sync_now(self) -> SyncRunResult:
        """Disparo bajo demanda (mismo guard single-flight que el timer)."""
        return await self._orchestrator.sync_now()

    def next_run_time(self) -> Optional[datetime]:
        job = self._scheduler.get_job(SYNC_JOB_ID)
        # Un job pendiente (scheduler sin arrancar) aun no tiene next_run_time
        return getattr(job, "next_run_time", None) if job else None
