"""
Monitor de salud de la conexión con el backend.

Sondea periodicamente la API (/health), un conjunto fijo de endpoints
(requeridos y opcionales) y el estado del canal realtime, y expone una
única señal "conectado":

    overall = api AND realtime AND todos los endpoints requeridos

Los endpoints opcionales se registran pero no cambian la señal. Fallas
consecutivas espacian las sondas (backoff lineal) hasta un tope; al
alcanzarlo el monitor se pausa hasta `resume()` o `force_reconnect()`.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from loguru import logger

from pos_sync.infrastructure.external.remote_sync.remote_client import RemoteSyncClient
from pos_sync.infrastructure.realtime.backoff import LinearBackoff
from pos_sync.infrastructure.realtime.channel_manager import RealtimeChannelManager
from pos_sync.shared.utils.datetime_utils import isoformat_z, utc_now


@dataclass(frozen=True)
class EndpointSpec:
    name: str
    path: str
    required: bool = True


DEFAULT_ENDPOINTS: tuple[EndpointSpec, ...] = (
    EndpointSpec("auth.verify", "/auth/verify"),
    EndpointSpec("shop.profile", "/shops/profile"),
    EndpointSpec("shop.stats", "/shops/stats", required=False),
    EndpointSpec("inventory.list", "/inventory/items"),
    EndpointSpec("inventory.alerts", "/inventory/alerts", required=False),
    EndpointSpec("sales.list", "/sales/transactions"),
    EndpointSpec("sales.analytics", "/sales/analytics", required=False),
    EndpointSpec("customers.list", "/customers"),
    EndpointSpec("customers.analytics", "/customers/analytics", required=False),
    EndpointSpec("suppliers.list", "/suppliers"),
    EndpointSpec("orders.list", "/orders"),
    EndpointSpec("system.health", "/system/health"),
    EndpointSpec("system.ping", "/system/ping"),
    EndpointSpec("system.time", "/system/time", required=False),
    EndpointSpec("system.version", "/system/version", required=False),
)


@dataclass
class EndpointHealth:
    connected: bool = False
    required: bool = True
    last_check: Optional[datetime] = None
    response_time_ms: Optional[float] = None
    errors: list[str] = field(default_factory=list)


@dataclass
class ConnectionStatus:
    """Estado efimero: se reconstruye en cada ronda de sondas."""

    api_connected: bool = False
    realtime_connected: bool = False
    endpoints: dict[str, EndpointHealth] = field(default_factory=dict)
    overall: bool = False
    last_check: Optional[datetime] = None
    retry_attempts: int = 0
    paused: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "api_connected": self.api_connected,
            "realtime_connected": self.realtime_connected,
            "overall": self.overall,
            "last_check": isoformat_z(self.last_check) if self.last_check else None,
            "retry_attempts": self.retry_attempts,
            "paused": self.paused,
            "endpoints": {
                name: {
                    "connected": h.connected,
                    "required": h.required,
                    "last_check": isoformat_z(h.last_check) if h.last_check else None,
                    "response_time_ms": h.response_time_ms,
                    "errors": list(h.errors),
                }
                for name, h in self.endpoints.items()
            },
        }


ChangeListener = Callable[[bool], Any]


class ConnectionMonitor:
    """
    Monitor periódico de conectividad.

    `client_provider` retorna el cliente remoto vigente: tras un cambio de
    configuración el monitor usa el cliente nuevo sin reconstruirse.
    """

    def __init__(
        self,
        client_provider: Callable[[], RemoteSyncClient],
        channel: Optional[RealtimeChannelManager] = None,
        *,
        interval_s: float = 30.0,
        backoff: Optional[LinearBackoff] = None,
        endpoints: tuple[EndpointSpec, ...] = DEFAULT_ENDPOINTS,
    ) -> None:
        self._client_provider = client_provider
        self._channel = channel
        self._interval_s = interval_s
        self._backoff = backoff or LinearBackoff()
        self._endpoints = endpoints
        self._status = ConnectionStatus()
        self._listeners: list[ChangeListener] = []
        self._task: Optional[asyncio.Task] = None
        self._resume_event = asyncio.Event()
        self._stopping = False

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._status.overall

    @property
    def paused(self) -> bool:
        return self._status.paused

    def on_change(self, listener: ChangeListener) -> None:
        """Suscribe un callback(overall: bool) a los cambios de la señal."""
        self._listeners.append(listener)

    async def _notify(self, overall: bool) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(overall)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Monitor: error en listener: {e}")

    async def check_all(self) -> ConnectionStatus:
        """Ejecuta una ronda de sondas y recalcula la señal agregada."""
        client = self._client_provider()
        specs = list(self._endpoints)

        results = await asyncio.gather(
            client.check_health(),
            *(client.probe(spec.path) for spec in specs),
        )
        api_result, endpoint_results = results[0], results[1:]
        now = utc_now()

        endpoints: dict[str, EndpointHealth] = {}
        for spec, probe in zip(specs, endpoint_results):
            endpoints[spec.name] = EndpointHealth(
                connected=probe.ok,
                required=spec.required,
                last_check=now,
                response_time_ms=probe.response_time_ms,
                errors=[] if probe.ok else [probe.error or "unknown"],
            )

        realtime_required = self._channel is not None
        realtime_ok = self._channel.is_connected if self._channel is not None else False
        required_ok = all(h.connected for h in endpoints.values() if h.required)
        overall = api_result.ok and (realtime_ok or not realtime_required) and required_ok

        previous = self._status.overall
        self._status = ConnectionStatus(
            api_connected=api_result.ok,
            realtime_connected=realtime_ok,
            endpoints=endpoints,
            overall=overall,
            last_check=now,
            retry_attempts=self._status.retry_attempts,
            paused=self._status.paused,
        )

        if overall != previous:
            logger.info(f"Monitor: conexión {'restablecida' if overall else 'perdida'}")
            await self._notify(overall)
        return self._status

    def get_stats(self) -> dict[str, Any]:
        """Resumen numérico de la última ronda."""
        endpoints = self._status.endpoints.values()
        total = len(self._status.endpoints)
        connected = sum(1 for h in endpoints if h.connected)
        required = [h for h in endpoints if h.required]
        required_connected = sum(1 for h in required if h.connected)
        return {
            "total_endpoints": total,
            "connected_endpoints": connected,
            "connection_rate": round(connected / total * 100, 1) if total else 0.0,
            "required_endpoints": len(required),
            "required_connected": required_connected,
            "required_connection_rate": (
                round(required_connected / len(required) * 100, 1) if required else 0.0
            ),
            "api_connected": self._status.api_connected,
            "realtime_connected": self._status.realtime_connected,
            "overall": self._status.overall,
        }

    # ------------------------------------------------------------------
    # Ciclo periódico
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._stopping = False
        self._task = asyncio.create_task(self._loop(), name="connection-monitor")

    async def stop(self) -> None:
        self._stopping = True
        self._resume_event.set()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    def resume(self) -> None:
        """Reanuda un monitor pausado y reinicia el contador de fallas."""
        self._status.retry_attempts = 0
        if self._status.paused:
            logger.info("Monitor: reanudado")
        self._status.paused = False
        self._resume_event.set()

    async def force_reconnect(self) -> ConnectionStatus:
        """Reanuda el monitor, fuerza la reconexión del canal y sondea de inmediato."""
        self.resume()
        if self._channel is not None:
            await self._channel.force_reconnect()
        return await self.check_all()

    async def run_once(self) -> float:
        """
        Una iteración del ciclo: sondea y calcula la espera siguiente.

        Returns:
            float: segundos hasta la próxima sonda
        """
        try:
            status = await self.check_all()
        except Exception as e:
            logger.error(f"Monitor: error sondeando: {e}")
            status = None

        if status is not None and status.overall:
            self._status.retry_attempts = 0
            return self._interval_s

        self._status.retry_attempts += 1
        if self._backoff.exhausted(self._status.retry_attempts):
            self._status.paused = True
            logger.warning(
                f"Monitor: {self._status.retry_attempts} fallas consecutivas, monitoreo en pausa"
            )
            return 0.0
        return self._backoff.delay(self._status.retry_attempts)

    async def _loop(self) -> None:
        while not self._stopping:
            if self._status.paused:
                self._resume_event.clear()
                await self._resume_event.wait()
                continue
            delay = await self.run_once()
            if delay > 0:
                await asyncio.sleep(delay)
