"""
Utilidades puras para manejo de fechas (sin I/O).

El almacén local guarda timestamps naive en UTC (SQLite no conserva zona);
hacia el backend remoto siempre se serializa ISO8601 con 'Z'.
"""
from datetime import datetime, timezone
from typing import Optional


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    """Retorna la hora actual en UTC, como datetime aware."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Normaliza datetime a UTC (aware).

    SQLite devuelve datetimes naive; se asumen en UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def isoformat_z(dt: datetime) -> str:
    """Serializa datetime a ISO8601 con 'Z' (UTC) para el feed de cambios."""
    dt_utc = ensure_utc(dt)
    return dt_utc.isoformat().replace("+00:00", "Z")


def parse_iso(value) -> Optional[datetime]:
    """
    Convierte un string ISO 8601 (acepta sufijo 'Z') a datetime UTC.

    Returns:
        Optional[datetime]: datetime aware o None si el valor no es parseable
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    try:
        return ensure_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except (ValueError, TypeError):
        return None


def to_naive_utc(dt: datetime) -> datetime:
    """Convierte a UTC naive, el formato en que el almacén local guarda fechas."""
    return ensure_utc(dt).replace(tzinfo=None)


def utc_now_naive() -> datetime:
    """Hora actual en UTC naive (para comparar con columnas del almacén local)."""
    return to_naive_utc(utc_now())
