"""Utilidades de fechas en UTC"""
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Fecha/hora actual en UTC (aware)"""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalizar un datetime a UTC aware.

    Algunos drivers (SQLite) devuelven datetimes naive aunque la columna sea
    timezone=True; en ese caso se asume que ya están en UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    """Serializar a ISO 8601 en UTC, o None"""
    value = as_utc(value)
    return value.isoformat() if value else None
