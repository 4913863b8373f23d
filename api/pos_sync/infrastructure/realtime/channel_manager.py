"""
Canal realtime con el backend (websockets).

Mantiene una conexión persistente por tienda:
- al conectar envía el frame de autenticación {shop_id, token} y vacía
  la cola de mensajes pendientes (FIFO)
- heartbeat: ping cada `heartbeat_interval`; sin pong en
  `heartbeat_timeout` la conexión se reinicia
- reconexión con backoff exponencial hasta `max_attempts`; después solo
  `force_reconnect()` vuelve a intentar
"""

from __future__ import annotations

import asyncio
import inspect
import json
from collections import deque
from typing import Any, Awaitable, Callable, Optional, Union
from urllib.parse import quote

import websockets
from loguru import logger

from pos_sync.shared.constants.sync_constants import ChannelState
from pos_sync.shared.utils.datetime_utils import isoformat_z, utc_now

from .backoff import ExponentialBackoff
from .events import EVENT_CLASSES, Pong, RealtimeEvent, parse_event


EventHandler = Callable[[Any], Union[None, Awaitable[None]]]
StateListener = Callable[[ChannelState], None]


class RealtimeChannelManager:
    """
    Gestor del canal realtime.

    Uso:
        channel = RealtimeChannelManager(base_url, shop_id, token)
        channel.on(PriceUpdate, handler)
        await channel.start()
        ...
        await channel.disconnect()
    """

    def __init__(
        self,
        base_url: str,
        shop_id: str,
        token: str,
        *,
        heartbeat_interval: float = 30.0,
        heartbeat_timeout: float = 10.0,
        backoff: Optional[ExponentialBackoff] = None,
        connect: Optional[Callable[..., Awaitable[Any]]] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._shop_id = shop_id
        self._token = token
        self._heartbeat_interval = heartbeat_interval
        self._heartbeat_timeout = heartbeat_timeout
        self._backoff = backoff or ExponentialBackoff()
        self._connect = connect or websockets.connect

        self._state = ChannelState.DISCONNECTED
        self._ws: Any = None
        self._attempts = 0
        self._last_activity = None
        self._outbox: deque[dict[str, Any]] = deque()
        self._handlers: dict[type, list[EventHandler]] = {cls: [] for cls in EVENT_CLASSES}
        self._state_listeners: list[StateListener] = []
        self._task: Optional[asyncio.Task] = None
        self._stopping = False
        self._pong_received = asyncio.Event()

    # ------------------------------------------------------------------
    # Estado
    # ------------------------------------------------------------------

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ChannelState.CONNECTED

    @property
    def url(self) -> str:
        return f"{self._base_url}/shop/{quote(self._shop_id)}?token={quote(self._token)}"

    def _set_state(self, state: ChannelState) -> None:
        if state == self._state:
            return
        self._state = state
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception as e:
                logger.error(f"Realtime: error en listener de estado: {e}")

    def update_token(self, token: str) -> None:
        """Nuevo token para la próxima conexión (no reconecta por si solo)."""
        self._token = token

    def on_state_change(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def get_status(self) -> dict[str, Any]:
        """Snapshot del canal para la API y el monitor de salud."""
        return {
            "state": self._state.value,
            "connected": self.is_connected,
            "reconnect_attempts": self._attempts,
            "max_reconnect_attempts": self._backoff.max_attempts,
            "last_activity": isoformat_z(self._last_activity) if self._last_activity else None,
            "queued_messages": len(self._outbox),
        }

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on(self, event_class: type, handler: EventHandler) -> None:
        """
        Registra un handler para una clase de evento.

        Raises:
            ValueError: Si la clase no es un evento conocido
        """
        if event_class not in self._handlers:
            raise ValueError(f"Clase de evento desconocida: {event_class!r}")
        self._handlers[event_class].append(handler)

    def off(self, event_class: type, handler: EventHandler) -> None:
        handlers = self._handlers.get(event_class, [])
        if handler in handlers:
            handlers.remove(handler)

    async def dispatch(self, event: RealtimeEvent) -> None:
        """Entrega un evento a sus handlers. Un handler que falla no corta el resto."""
        for handler in list(self._handlers.get(type(event), [])):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Realtime: handler de {type(event).__name__} falló: {e}")

    async def handle_frame(self, raw: Union[str, bytes]) -> None:
        """Procesa un frame entrante (JSON envelope)."""
        self._last_activity = utc_now()
        try:
            envelope = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Realtime: frame no es JSON válido: {str(raw)[:200]}")
            return

        event = parse_event(envelope)
        if event is None:
            return
        if isinstance(event, Pong):
            self._pong_received.set()
        await self.dispatch(event)

    # ------------------------------------------------------------------
    # Salida
    # ------------------------------------------------------------------

    async def send(self, message: dict[str, Any]) -> bool:
        """
        Envía un mensaje o lo encola si el canal no está conectado.

        Returns:
            bool: True si se envió de inmediato
        """
        if self.is_connected and self._ws is not None:
            try:
                await self._ws.send(json.dumps(message, default=str))
                return True
            except Exception as e:
                logger.warning(f"Realtime: falló el envío, se encola: {e}")
        self._outbox.append(message)
        return False

    async def publish(self, event_type: str, data: dict[str, Any]) -> bool:
        return await self.send({"type": event_type, "data": data, "timestamp": isoformat_z(utc_now())})

    async def _flush_outbox(self) -> None:
        while self._outbox and self._ws is not None:
            message = self._outbox[0]
            await self._ws.send(json.dumps(message, default=str))
            self._outbox.popleft()

    # ------------------------------------------------------------------
    # Ciclo de conexión
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Lanza el ciclo de conexión en segundo plano (idempotente)."""
        if self._task is not None and not self._task.done():
            return
        if not self._shop_id or not self._token:
            logger.warning("Realtime: SHOP_ID o token no configurados, canal deshabilitado")
            return
        self._stopping = False
        self._task = asyncio.create_task(self._run(), name="realtime-channel")

    async def disconnect(self) -> None:
        """Cierra el canal sin reconectar."""
        self._stopping = True
        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception as e:
                logger.debug(f"Realtime: error cerrando socket: {e}")
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._ws = None
        self._set_state(ChannelState.DISCONNECTED)
        logger.info("Realtime: canal desconectado")

    async def force_reconnect(self) -> None:
        """Reinicia el contador de intentos y reconecta."""
        logger.info("Realtime: reconexión forzada")
        await self.disconnect()
        self._attempts = 0
        await self.start()

    async def _run(self) -> None:
        while not self._stopping:
            connected = await self._connect_once()
            if self._stopping:
                break
            if connected:
                # Sesión terminada: el contador arranca de nuevo
                self._attempts = 0

            self._attempts += 1
            if self._backoff.exhausted(self._attempts):
                self._set_state(ChannelState.DISCONNECTED)
                logger.error(
                    f"Realtime: {self._attempts} intentos fallidos, reconexión automática detenida"
                )
                return

            delay = self._backoff.delay(self._attempts)
            self._set_state(ChannelState.RECONNECTING)
            logger.warning(f"Realtime: reintento {self._attempts} en {delay:.1f}s")
            await asyncio.sleep(delay)

    async def _connect_once(self) -> bool:
        """
        Abre una conexión y la atiende hasta que se cierra.

        El estado pasa a CONNECTED recien después del frame de auth y de
        vaciar la cola: mientras tanto `send()` sigue encolando, así los
        mensajes nuevos salen detrás de los pendientes.

        Returns:
            bool: True si la conexión llegó a CONNECTED
        """
        self._set_state(ChannelState.CONNECTING)
        try:
            self._ws = await self._connect(self.url, ping_interval=None)
        except Exception as e:
            logger.warning(f"Realtime: no se pudo conectar: {e}")
            self._ws = None
            return False

        self._last_activity = utc_now()
        heartbeat: Optional[asyncio.Task] = None
        established = False
        try:
            await self._ws.send(json.dumps({
                "type": "auth",
                "data": {"shop_id": self._shop_id, "token": self._token},
            }))
            await self._flush_outbox()
            # Sin await entre el fin del flush y el cambio de estado
            self._set_state(ChannelState.CONNECTED)
            established = True
            logger.success(f"Realtime: conectado a tienda {self._shop_id}")

            heartbeat = asyncio.create_task(self._heartbeat_loop())
            async for raw in self._ws:
                await self.handle_frame(raw)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Realtime: conexión perdida: {e}")
        finally:
            if heartbeat is not None:
                heartbeat.cancel()
            self._ws = None
            if not self._stopping:
                self._set_state(ChannelState.DISCONNECTED)
        return established

    async def _heartbeat_loop(self) -> None:
        """Ping periódico; sin pong a tiempo se cierra el socket."""
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            ws = self._ws
            if ws is None:
                return
            self._pong_received.clear()
            try:
                await ws.send(json.dumps({"type": "ping", "timestamp": isoformat_z(utc_now())}))
                await asyncio.wait_for(self._pong_received.wait(), timeout=self._heartbeat_timeout)
            except asyncio.TimeoutError:
                logger.warning("Realtime: heartbeat sin respuesta, reiniciando conexión")
                await ws.close()
                return
            except Exception as e:
                logger.warning(f"Realtime: error en heartbeat: {e}")
                return
