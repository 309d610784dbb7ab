"""
Time helpers shared by the consultation services.

All persisted timestamps are naive datetimes on the server's UTC clock.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone, tzinfo
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utcnow() -> datetime:
    """Current server time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to the naive UTC form used in storage."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def resolve_timezone(name: str) -> tzinfo:
    """Map an IANA zone name to a tzinfo; 'UTC' needs no zone database."""
    if name.strip().upper() == 'UTC':
        return timezone.utc
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {name}") from e


def start_of_month(now: datetime, tz: Optional[tzinfo] = None) -> datetime:
    """
    First instant of the calendar month containing ``now``.

    ``now`` is naive UTC. When ``tz`` is given the month boundary is taken on
    that zone's wall clock and returned converted back to naive UTC, so a
    server configured for America/Sao_Paulo starts counting at local
    midnight on the 1st.
    """
    if tz is None:
        return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    local = now.replace(tzinfo=timezone.utc).astimezone(tz)
    return to_naive_utc(local.replace(day=1, hour=0, minute=0, second=0, microsecond=0))


def minutes_between(start: datetime, end: datetime) -> float:
    return (end - start) / timedelta(minutes=1)


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start) / timedelta(hours=1)


def round_half_up(value: float, digits: int = 0) -> float:
    """
    Round halves away from zero.

    ``round()`` uses banker's rounding, which would report a 2.5 minute
    session as 2 minutes.
    """
    exponent = Decimal(1).scaleb(-digits)
    return float(Decimal(str(value)).quantize(exponent, rounding=ROUND_HALF_UP))
