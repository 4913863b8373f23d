"""
Mapeos tabla local -> recurso REST remoto.

Una tabla sin mapeo es un error de configuración: el registro falla de
inmediato y no se reintenta.

Este módulo no realiza I/O.
"""

from __future__ import annotations

from pos_sync.shared.exceptions.sync import ConfigurationError


TABLE_RESOURCES: dict[str, str] = {
    "products": "/v1/parts",
    "customers": "/v1/customers",
    "suppliers": "/v1/suppliers",
    "sales": "/v1/transactions",
    "users": "/v1/users",
    "orders": "/v1/orders",
    "inventory": "/v1/inventory/items",
}


def resource_for(table: str) -> str:
    """
    Retorna el recurso remoto de una tabla local.

    Raises:
        ConfigurationError: Si la tabla no tiene mapeo
    """
    try:
        return TABLE_RESOURCES[table]
    except KeyError:
        raise ConfigurationError(f"Tabla sin mapeo remoto: {table}", table=table)


def table_for(resource: str) -> str | None:
    """Mapeo inverso (recurso remoto -> tabla local), usado por el feed de cambios."""
    normalized = "/" + resource.strip("/")
    for table, path in TABLE_RESOURCES.items():
        if path == normalized:
            return table
    return None


def record_url(table: str, remote_id: str | None = None) -> str:
    """Path relativo para un registro (o la colección si no hay id)."""
    base = resource_for(table)
    if remote_id is None:
        return base
    return f"{base}/{remote_id}"
