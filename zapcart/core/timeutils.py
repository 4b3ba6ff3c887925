from __future__ import annotations

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from zapcart.core.config import EVENT_TIMEZONE


def utcnow() -> datetime:
    """UTC sem tzinfo, formato usado nas colunas comparadas em código."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def event_date_for(moment: datetime | None = None, tz_name: str = EVENT_TIMEZONE) -> date:
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(ZoneInfo(tz_name)).date()
