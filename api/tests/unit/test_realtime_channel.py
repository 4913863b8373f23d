"""
Tests del canal realtime: eventos, despacho, cola de salida y reconexión.
"""
import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from pos_sync.application.services.realtime_handlers import RealtimeEventHandlers
from pos_sync.infrastructure.realtime.backoff import ExponentialBackoff, LinearBackoff
from pos_sync.infrastructure.realtime.channel_manager import RealtimeChannelManager
from pos_sync.infrastructure.realtime.events import (
    InventoryUpdate,
    PriceUpdate,
    StockAlert,
    SyncRequest,
    parse_event,
)
from pos_sync.shared.constants.sync_constants import ChannelState


class FakeWebSocket:
    """Socket en memoria: `frames` alimenta la iteración, `sent` registra la salida."""

    def __init__(self):
        self.sent = []
        self.closed = False
        self.frames: asyncio.Queue = asyncio.Queue()

    async def send(self, message):
        self.sent.append(json.loads(message))

    async def close(self):
        self.closed = True
        self.frames.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        frame = await self.frames.get()
        if frame is None:
            raise StopAsyncIteration
        return frame


class YieldingWebSocket(FakeWebSocket):
    """Socket que cede el loop en cada envío, como uno real."""

    async def send(self, message):
        await asyncio.sleep(0)
        await super().send(message)


async def _wait_for(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condición no alcanzada a tiempo")
        await asyncio.sleep(0.01)


def _channel(connect, **kwargs):
    kwargs.setdefault("backoff", ExponentialBackoff(base_delay=0, max_delay=0, max_attempts=1))
    kwargs.setdefault("heartbeat_interval", 60)
    return RealtimeChannelManager("wss://remote.test/ws/", "shop-1", "tok en", connect=connect, **kwargs)


class TestBackoff:
    def test_exponential_delays_are_capped(self):
        backoff = ExponentialBackoff(base_delay=1, max_delay=30, max_attempts=5)

        assert [backoff.delay(n) for n in range(1, 8)] == [1, 2, 4, 8, 16, 30, 30]
        assert backoff.exhausted(4) is False
        assert backoff.exhausted(5) is True

    def test_linear_delays(self):
        backoff = LinearBackoff(step=5, max_attempts=5)

        assert [backoff.delay(n) for n in (1, 2, 3)] == [5, 10, 15]


class TestParseEvent:
    """Tests del conjunto cerrado de eventos."""

    def test_known_event(self):
        event = parse_event({
            "type": "price_update",
            "data": {"item_id": 12, "new_price": "9.5"},
            "timestamp": "2026-03-01T10:00:00Z",
        })

        assert isinstance(event, PriceUpdate)
        assert event.item_id == "12"
        assert event.new_price == 9.5
        assert event.timestamp is not None

    def test_stock_alert_defaults(self):
        event = parse_event({"type": "stock_alert", "data": {"item_id": "1"}})

        assert event == StockAlert(item_id="1", item_name="", current_stock=0, min_stock=0)

    @pytest.mark.parametrize(
        "envelope",
        [
            {"type": "teleport", "data": {}},
            {"type": "price_update", "data": {"item_id": "1"}},
            {"type": "price_update", "data": {"item_id": "1", "new_price": "gratis"}},
            ["not", "an", "envelope"],
        ],
    )
    def test_unknown_or_malformed_is_dropped(self, envelope):
        assert parse_event(envelope) is None


class TestDispatch:
    """Tests del registro de handlers y despacho."""

    @pytest.mark.asyncio
    async def test_handlers_receive_typed_events(self):
        channel = _channel(AsyncMock())
        received = []
        channel.on(PriceUpdate, received.append)

        await channel.handle_frame(json.dumps({"type": "price_update", "data": {"item_id": "1", "new_price": 3}}))
        await channel.handle_frame("{not json")
        await channel.handle_frame(json.dumps({"type": "teleport"}))

        assert received == [PriceUpdate(item_id="1", new_price=3.0)]

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_block_others(self):
        channel = _channel(AsyncMock())
        received = []

        def broken(event):
            raise RuntimeError("boom")

        channel.on(SyncRequest, broken)
        channel.on(SyncRequest, received.append)

        await channel.dispatch(SyncRequest())

        assert received == [SyncRequest()]

    def test_unknown_event_class_is_rejected(self):
        channel = _channel(AsyncMock())

        with pytest.raises(ValueError):
            channel.on(dict, print)

    def test_url_includes_shop_and_token(self):
        channel = _channel(AsyncMock())

        assert channel.url == "wss://remote.test/ws/shop/shop-1?token=tok%20en"


class TestConnection:
    """Tests del ciclo de conexión."""

    @pytest.mark.asyncio
    async def test_connect_authenticates_and_flushes_outbox(self):
        ws = FakeWebSocket()
        connect = AsyncMock(return_value=ws)
        channel = _channel(connect)
        states = []
        channel.on_state_change(states.append)
        received = []
        channel.on(InventoryUpdate, received.append)

        assert await channel.send({"type": "hello"}) is False
        assert channel.get_status()["queued_messages"] == 1

        await channel.start()
        await _wait_for(lambda: len(ws.sent) >= 2)

        assert channel.is_connected
        assert ws.sent[0] == {"type": "auth", "data": {"shop_id": "shop-1", "token": "tok en"}}
        assert ws.sent[1] == {"type": "hello"}
        assert channel.get_status()["queued_messages"] == 0

        ws.frames.put_nowait(json.dumps({
            "type": "inventory_update",
            "data": {"item_id": "7", "action": "update", "changes": {"quantity": 3}},
        }))
        await _wait_for(lambda: received)
        assert received[0].changes == {"quantity": 3}

        await channel.disconnect()
        assert channel.state == ChannelState.DISCONNECTED
        assert states[:2] == [ChannelState.CONNECTING, ChannelState.CONNECTED]

    @pytest.mark.asyncio
    async def test_messages_sent_during_flush_keep_fifo_order(self):
        """Un envío durante el auth o el flush sale detrás de la cola pendiente."""
        ws = YieldingWebSocket()
        channel = _channel(None)
        live_sends = []

        async def connect(url, **kwargs):
            # Corre en el primer punto de espera: el envío del frame de auth
            live_sends.append(asyncio.ensure_future(channel.send({"type": "during_auth"})))
            return ws

        channel._connect = connect
        channel.on_state_change(
            lambda state: live_sends.append(asyncio.ensure_future(channel.send({"type": "live"})))
            if state == ChannelState.CONNECTED else None
        )

        await channel.send({"type": "queued1"})
        await channel.send({"type": "queued2"})
        await channel.start()
        await _wait_for(lambda: len(ws.sent) >= 5)

        assert [m["type"] for m in ws.sent] == ["auth", "queued1", "queued2", "during_auth", "live"]
        assert channel.get_status()["queued_messages"] == 0
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_reconnect_stops_at_ceiling_until_forced(self):
        connect = AsyncMock(side_effect=OSError("refused"))
        channel = _channel(connect, backoff=ExponentialBackoff(base_delay=0, max_delay=0, max_attempts=3))

        await channel.start()
        await _wait_for(lambda: connect.await_count == 3 and channel.state == ChannelState.DISCONNECTED)
        await asyncio.sleep(0.05)

        assert connect.await_count == 3
        assert channel.get_status()["reconnect_attempts"] == 3

        await channel.force_reconnect()
        await _wait_for(lambda: connect.await_count == 6)
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_missing_pong_restarts_connection(self):
        ws = FakeWebSocket()
        channel = _channel(
            AsyncMock(return_value=ws),
            heartbeat_interval=0.01,
            heartbeat_timeout=0.01,
        )

        await channel.start()
        await _wait_for(lambda: ws.closed)

        assert any(message["type"] == "ping" for message in ws.sent)
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_start_without_token_does_nothing(self):
        connect = AsyncMock()
        channel = RealtimeChannelManager("wss://remote.test/ws", "shop-1", "", connect=connect)

        await channel.start()
        await asyncio.sleep(0.01)

        connect.assert_not_awaited()
        assert channel.state == ChannelState.DISCONNECTED


class TestRealtimeHandlers:
    """Tests de los handlers por defecto."""

    @pytest.mark.asyncio
    async def test_inventory_and_price_updates_reach_local_store(self, local_store):
        trigger = AsyncMock()
        handlers = RealtimeEventHandlers(local_store, trigger)

        await handlers.on_inventory_update(
            InventoryUpdate(item_id="7", action="update", changes={"name": "Bujia", "quantity": 4})
        )
        await handlers.on_price_update(PriceUpdate(item_id="7", new_price=12.5))

        row = await local_store.fetch_record("inventory", "7")
        assert row["quantity"] == 4
        assert row["unit_price"] == 12.5

        await handlers.on_inventory_update(InventoryUpdate(item_id="7", action="delete"))
        assert await local_store.fetch_record("inventory", "7") is None

    @pytest.mark.asyncio
    async def test_price_update_for_unknown_item_is_ignored(self, local_store):
        handlers = RealtimeEventHandlers(local_store, AsyncMock())

        await handlers.on_price_update(PriceUpdate(item_id="404", new_price=1.0))

        assert await local_store.fetch_record("inventory", "404") is None

    @pytest.mark.asyncio
    async def test_sync_request_triggers_cycle(self, local_store):
        trigger = AsyncMock()
        channel = _channel(AsyncMock())
        RealtimeEventHandlers(local_store, trigger).register(channel)

        await channel.handle_frame(json.dumps({"type": "sync_request", "data": {}}))

        trigger.assert_awaited_once()
