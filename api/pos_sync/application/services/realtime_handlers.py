"""
Handlers por defecto de los eventos realtime.

- InventoryUpdate: aplica `changes` sobre la tabla local inventory
- PriceUpdate: actualiza inventory.unit_price
- StockAlert / OrderNotification / SystemMessage: se registran en el log
- SyncRequest: dispara un ciclo inmediato (mismo guard single-flight)
"""

from __future__ import annotations

from typing import Awaitable, Callable

from loguru import logger

from pos_sync.infrastructure.database.local_store import LocalStore
from pos_sync.infrastructure.realtime.channel_manager import RealtimeChannelManager
from pos_sync.infrastructure.realtime.events import (
    InventoryUpdate,
    OrderNotification,
    PriceUpdate,
    StockAlert,
    SyncRequest,
    SystemMessage,
)


INVENTORY_TABLE = "inventory"


class RealtimeEventHandlers:
    """Conecta los eventos del canal con el almacén local y el orquestador."""

    def __init__(self, local_store: LocalStore, trigger_sync: Callable[[], Awaitable[object]]) -> None:
        self._store = local_store
        self._trigger_sync = trigger_sync

    def register(self, channel: RealtimeChannelManager) -> None:
        channel.on(InventoryUpdate, self.on_inventory_update)
        channel.on(PriceUpdate, self.on_price_update)
        channel.on(StockAlert, self.on_stock_alert)
        channel.on(OrderNotification, self.on_order_notification)
        channel.on(SystemMessage, self.on_system_message)
        channel.on(SyncRequest, self.on_sync_request)

    async def on_inventory_update(self, event: InventoryUpdate) -> None:
        if event.action == "delete":
            await self._store.delete_record(INVENTORY_TABLE, event.item_id)
        elif event.changes:
            await self._store.upsert_record(INVENTORY_TABLE, event.item_id, event.changes)
        else:
            return
        logger.info(f"Realtime: inventario {event.item_id} actualizado ({event.action})")

    async def on_price_update(self, event: PriceUpdate) -> None:
        updated = await self._store.update_record(
            INVENTORY_TABLE, event.item_id, {"unit_price": event.new_price}
        )
        if updated:
            logger.info(f"Realtime: precio de {event.item_id} -> {event.new_price}")
        else:
            logger.warning(f"Realtime: item {event.item_id} no existe localmente, precio ignorado")

    def on_stock_alert(self, event: StockAlert) -> None:
        logger.warning(
            f"Realtime: stock bajo en {event.item_name or event.item_id} "
            f"({event.current_stock}/{event.min_stock})"
        )

    def on_order_notification(self, event: OrderNotification) -> None:
        logger.info(f"Realtime: notificación de orden {event.order_number}")

    def on_system_message(self, event: SystemMessage) -> None:
        level = event.level.lower()
        if level in ("error", "critical"):
            logger.error(f"Realtime: mensaje del sistema: {event.message}")
        elif level == "warning":
            logger.warning(f"Realtime: mensaje del sistema: {event.message}")
        else:
            logger.info(f"Realtime: mensaje del sistema: {event.message}")

    async def on_sync_request(self, event: SyncRequest) -> None:
        logger.info("Realtime: el backend solicito un ciclo de sync")
        await self._trigger_sync()
