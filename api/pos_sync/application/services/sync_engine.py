"""
Contenedor del motor de sincronización.

Construye y conecta los componentes (almacén local, cliente remoto,
orquestador, scheduler, canal realtime, monitor) a partir de un SyncConfig
explícito, y es el único punto que cambia la configuración en caliente:
`update_config` valida, persiste e intercambia el snapshot de forma
atómica, reprogramando el scheduler si cambió el intervalo o el flag.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

import httpx
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from pos_sync.application.services.connection_monitor import ConnectionMonitor
from pos_sync.application.services.conflict_resolver import ConflictResolver, ResolutionOutcome
from pos_sync.application.services.realtime_handlers import RealtimeEventHandlers
from pos_sync.application.services.sync_orchestrator import SyncOrchestrator, SyncRunResult, SyncStatus
from pos_sync.application.services.sync_scheduler import SyncScheduler
from pos_sync.core.config import Settings
from pos_sync.infrastructure.database.local_store import LocalStore
from pos_sync.infrastructure.external.remote_sync.remote_client import RemoteSyncClient
from pos_sync.infrastructure.external.remote_sync.sync_config import SyncConfig
from pos_sync.infrastructure.realtime.backoff import ExponentialBackoff, LinearBackoff
from pos_sync.infrastructure.realtime.channel_manager import RealtimeChannelManager
from pos_sync.infrastructure.repositories.sync_config_repository import SyncConfigRepository
from pos_sync.infrastructure.repositories.sync_queue_repository import SyncQueueRepository
from pos_sync.shared.constants.sync_constants import CONFIG_KEYS


async def load_sync_config(session_factory: async_sessionmaker, settings: Settings) -> SyncConfig:
    """
    Carga la configuración vigente: valores de arranque (env) con la
    tabla sync_config por encima.
    """
    bootstrap = SyncConfig.from_settings(settings)
    async with session_factory() as db:
        stored = await SyncConfigRepository(db).get_all()
    overrides = {k: v for k, v in stored.items() if k in CONFIG_KEYS and v is not None}
    if not overrides:
        return bootstrap
    return bootstrap.with_changes(**overrides)


class SyncEngine:
    """
    Composición del motor.

    Uso:
        engine = await SyncEngine.create(settings, db_engine, session_factory)
        await engine.start()
        ...
        await engine.stop()
    """

    def __init__(
        self,
        settings: Settings,
        config: SyncConfig,
        db_engine: AsyncEngine,
        session_factory: async_sessionmaker,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        ws_connect: Optional[Callable[..., Any]] = None,
        scheduler: Optional[Any] = None,
    ) -> None:
        self._settings = settings
        self._config = config
        self._session_factory = session_factory
        self._transport = transport
        self._config_lock = asyncio.Lock()
        self._retired_clients: list[RemoteSyncClient] = []

        self.store = LocalStore(db_engine)
        self.resolver = ConflictResolver(session_factory, self.store)
        self.orchestrator = SyncOrchestrator(
            session_factory, self.store, config, self._build_client(config), self.resolver
        )
        self.scheduler = SyncScheduler(self.orchestrator, config, scheduler)

        self.channel: Optional[RealtimeChannelManager] = None
        if settings.REALTIME_ENABLED and settings.SHOP_ID:
            self.channel = RealtimeChannelManager(
                settings.effective_ws_url,
                settings.SHOP_ID,
                config.api_key,
                heartbeat_interval=settings.REALTIME_HEARTBEAT_INTERVAL_SECONDS,
                heartbeat_timeout=settings.REALTIME_HEARTBEAT_TIMEOUT_SECONDS,
                backoff=ExponentialBackoff(
                    base_delay=settings.REALTIME_RECONNECT_BASE_DELAY_SECONDS,
                    max_delay=settings.REALTIME_RECONNECT_MAX_DELAY_SECONDS,
                    max_attempts=settings.REALTIME_MAX_RECONNECT_ATTEMPTS,
                ),
                connect=ws_connect,
            )
            RealtimeEventHandlers(self.store, self.sync_now).register(self.channel)

        self.monitor = ConnectionMonitor(
            lambda: self.orchestrator.client,
            self.channel,
            interval_s=settings.HEALTH_CHECK_INTERVAL_SECONDS,
            backoff=LinearBackoff(
                step=settings.HEALTH_RETRY_DELAY_SECONDS,
                max_attempts=settings.HEALTH_MAX_RETRY_ATTEMPTS,
            ),
        )
        self.orchestrator.on_cycle_complete(self._resume_monitor_after_cycle)

    def _resume_monitor_after_cycle(self, status: SyncStatus) -> None:
        """Un ciclo completo sin errores prueba que el backend responde."""
        if self.monitor.paused and not status.degraded and not status.errors:
            logger.info("Monitor: ciclo de sync exitoso, se reanuda el monitoreo")
            self.monitor.resume()

    @classmethod
    async def create(
        cls,
        settings: Settings,
        db_engine: AsyncEngine,
        session_factory: async_sessionmaker,
        **kwargs: Any,
    ) -> "SyncEngine":
        config = await load_sync_config(session_factory, settings)
        return cls(settings, config, db_engine, session_factory, **kwargs)

    def _build_client(self, config: SyncConfig) -> RemoteSyncClient:
        return RemoteSyncClient(
            config,
            timeout_s=self._settings.HTTP_TIMEOUT_SECONDS,
            transport=self._transport,
        )

    @property
    def config(self) -> SyncConfig:
        return self._config

    @property
    def session_factory(self) -> async_sessionmaker:
        return self._session_factory

    # ------------------------------------------------------------------
    # Ciclo de vida
    # ------------------------------------------------------------------

    async def start(self) -> None:
        async with self._session_factory() as db:
            await SyncQueueRepository(db).reset_stuck_syncing()
            await db.commit()

        self.scheduler.start()
        if self.channel is not None:
            if self._config.authenticated:
                await self.channel.start()
            else:
                logger.warning("Realtime: sin token remoto, canal no iniciado")
        await self.monitor.start()

        if not self._config.authenticated:
            logger.warning("REMOTE_API_KEY no configurada: el motor opera en modo local")
        logger.success("Motor de sincronización iniciado")

    async def stop(self) -> None:
        self.scheduler.shutdown()
        await self.monitor.stop()
        if self.channel is not None:
            await self.channel.disconnect()
        await self.orchestrator.client.aclose()
        for client in self._retired_clients:
            await client.aclose()
        self._retired_clients.clear()
        logger.info("Motor de sincronización detenido")

    # ------------------------------------------------------------------
    # Operaciones
    # ------------------------------------------------------------------

    async def enqueue(
        self, table: str, action: str, payload: dict[str, Any], record_id: Optional[str] = None
    ) -> str:
        """Agrega una mutación local a la cola (nunca toca la red)."""
        async with self._session_factory() as db:
            queue_id = await SyncQueueRepository(db).enqueue(table, action, payload, record_id)
            await db.commit()
        return queue_id

    async def sync_now(self) -> SyncRunResult:
        return await self.scheduler.sync_now()

    def get_status(self) -> SyncStatus:
        status = self.orchestrator.get_status()
        status.next_sync = self.scheduler.next_run_time()
        return status

    async def resolve_conflict(
        self,
        conflict_id: int,
        resolution: str,
        merged_data: Optional[dict[str, Any]] = None,
        resolved_by: str = "operator",
    ) -> ResolutionOutcome:
        return await self.resolver.resolve(conflict_id, resolution, merged_data, resolved_by)

    async def update_config(self, **changes: Any) -> SyncConfig:
        """
        Valida, persiste e intercambia la configuración.

        Un ciclo en curso conserva el snapshot con el que empezo.

        Raises:
            ValidationError: Si algún valor es inválido (no se persiste nada)
        """
        async with self._config_lock:
            old = self._config
            new = old.with_changes(**changes)

            async with self._session_factory() as db:
                await SyncConfigRepository(db).set_many(new.to_storage())
                await db.commit()

            old_client = self.orchestrator.client
            client = self._build_client(new) if old.transport_changed(new) else old_client

            self._config = new
            self.orchestrator.swap_runtime(new, client)

            if old.schedule_changed(new):
                self.scheduler.reconfigure(new)

            if old.transport_changed(new):
                # Las sondas fallidas con el transporte anterior ya no aplican
                self.monitor.resume()

            if client is not old_client:
                if self.orchestrator.is_running:
                    # El ciclo en curso todavía usa el cliente anterior
                    self._retired_clients.append(old_client)
                else:
                    await old_client.aclose()
                if self.channel is not None and old.api_key != new.api_key:
                    self.channel.update_token(new.api_key)
                    if new.authenticated:
                        await self.channel.force_reconnect()
                    else:
                        await self.channel.disconnect()

            logger.info("Configuración de sync actualizada")
            return new
