"""
Eventos del canal realtime.

Conjunto cerrado de tipos de evento entrantes. Cada envelope
{type, data, timestamp} se convierte en una instancia inmutable;
un tipo desconocido retorna None (se registra y se descarta).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional, Union

from loguru import logger

from pos_sync.shared.utils.datetime_utils import parse_iso


@dataclass(frozen=True)
class InventoryUpdate:
    """Cambio de inventario de un item (`changes` son columnas locales)."""

    item_id: str
    action: str
    changes: dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class PriceUpdate:
    item_id: str
    new_price: float
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class StockAlert:
    item_id: str
    item_name: str
    current_stock: int
    min_stock: int
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class OrderNotification:
    order_number: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class SystemMessage:
    message: str
    level: str = "info"
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class SyncRequest:
    """El backend pide un ciclo de sincronización inmediato."""

    data: dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class Pong:
    timestamp: Optional[datetime] = None


RealtimeEvent = Union[
    InventoryUpdate,
    PriceUpdate,
    StockAlert,
    OrderNotification,
    SystemMessage,
    SyncRequest,
    Pong,
]

EVENT_CLASSES: tuple[type, ...] = (
    InventoryUpdate,
    PriceUpdate,
    StockAlert,
    OrderNotification,
    SystemMessage,
    SyncRequest,
    Pong,
)


def _inventory_update(data: dict[str, Any], ts: Optional[datetime]) -> InventoryUpdate:
    changes = data.get("changes")
    return InventoryUpdate(
        item_id=str(data["item_id"]),
        action=str(data.get("action", "update")),
        changes=changes if isinstance(changes, dict) else {},
        timestamp=ts,
    )


def _price_update(data: dict[str, Any], ts: Optional[datetime]) -> PriceUpdate:
    return PriceUpdate(item_id=str(data["item_id"]), new_price=float(data["new_price"]), timestamp=ts)


def _stock_alert(data: dict[str, Any], ts: Optional[datetime]) -> StockAlert:
    return StockAlert(
        item_id=str(data["item_id"]),
        item_name=str(data.get("item_name", "")),
        current_stock=int(data.get("current_stock", 0)),
        min_stock=int(data.get("min_stock", 0)),
        timestamp=ts,
    )


def _order_notification(data: dict[str, Any], ts: Optional[datetime]) -> OrderNotification:
    return OrderNotification(order_number=str(data["order_number"]), data=data, timestamp=ts)


def _system_message(data: dict[str, Any], ts: Optional[datetime]) -> SystemMessage:
    return SystemMessage(message=str(data.get("message", "")), level=str(data.get("level", "info")), timestamp=ts)


def _sync_request(data: dict[str, Any], ts: Optional[datetime]) -> SyncRequest:
    return SyncRequest(data=data, timestamp=ts)


def _pong(data: dict[str, Any], ts: Optional[datetime]) -> Pong:
    return Pong(timestamp=ts)


_PARSERS: dict[str, Callable[[dict[str, Any], Optional[datetime]], RealtimeEvent]] = {
    "inventory_update": _inventory_update,
    "price_update": _price_update,
    "stock_alert": _stock_alert,
    "order_notification": _order_notification,
    "system_message": _system_message,
    "sync_request": _sync_request,
    "pong": _pong,
}


def parse_event(envelope: Any) -> Optional[RealtimeEvent]:
    """
    Convierte un envelope JSON en un evento tipado.

    Returns:
        Optional[RealtimeEvent]: None si el tipo es desconocido o el
        payload no trae los campos obligatorios
    """
    if not isinstance(envelope, dict):
        logger.warning(f"Realtime: frame sin formato de envelope: {str(envelope)[:200]}")
        return None

    event_type = envelope.get("type")
    parser = _PARSERS.get(event_type)
    if parser is None:
        logger.warning(f"Realtime: tipo de evento desconocido '{event_type}', descartado")
        return None

    data = envelope.get("data") if isinstance(envelope.get("data"), dict) else {}
    try:
        return parser(data, parse_iso(envelope.get("timestamp")))
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"Realtime: evento '{event_type}' mal formado ({e}), descartado")
        return None
