from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from flask import current_app, has_app_context


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def ledger_now() -> datetime:
    """
    Clock used to stamp ledger records and evaluate duplicate windows.

    Reads the LEDGER_CLOCK callable from app config when one is installed,
    otherwise falls back to utcnow().
    """
    if has_app_context():
        clock = current_app.config.get("LEDGER_CLOCK")
        if clock is not None:
            return normalize_datetime(clock())
    return utcnow()


def normalize_datetime(dt: datetime) -> datetime:
    """Aware -> converted to UTC and stripped; naive is taken as UTC already."""
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    return normalize_datetime(datetime.fromisoformat(s))


def parse_ymd(value) -> Optional[date]:
    """
    Parse a calendar date. Accepts date objects or strict 'YYYY-MM-DD' strings.
    Returns None for anything else.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    s = value.strip()
    if len(s) != 10:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


def start_of_day(d: date) -> datetime:
    return datetime.combine(d, time.min)


def end_of_day(d: date) -> datetime:
    """Inclusive cutoff for a calendar day: 23:59:59.999999."""
    return datetime.combine(d, time.max)


def iter_days(start: date, end: date):
    """Inclusive calendar-day iteration."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def to_ymd(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d is not None else None
