from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

from ..normalize.schema import MonthWindow


def utc_now_iso() -> str:
    """Return current UTC time in ISO-8601 format with seconds precision."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def parse_iso_utc(value: str) -> datetime:
    raw = (value or "").strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    # az CLI emits 7 fractional digits; fromisoformat accepts at most 6.
    if "." in raw:
        head, _, tail = raw.partition(".")
        digits = ""
        rest = ""
        for i, ch in enumerate(tail):
            if not ch.isdigit():
                rest = tail[i:]
                break
            digits += ch
        raw = f"{head}.{digits[:6].ljust(6, '0')}{rest}" if digits else f"{head}{rest}"
    dt = datetime.fromisoformat(raw)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def coerce_utc(value: Any) -> Optional[datetime]:
    """
    Accept datetimes or ISO strings; return an aware UTC datetime or None for blanks.
    Unparseable input raises ValueError.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    text = str(value).strip()
    if not text:
        return None
    return parse_iso_utc(text)


def month_start(dt: datetime) -> datetime:
    dt = dt.astimezone(timezone.utc)
    return datetime(dt.year, dt.month, 1, tzinfo=timezone.utc)


def add_months(dt: datetime, months: int) -> datetime:
    index = dt.year * 12 + (dt.month - 1) + months
    return dt.replace(year=index // 12, month=index % 12 + 1, day=1)


def month_windows(now: datetime, count: int) -> List[MonthWindow]:
    """
    Return `count` contiguous calendar-month windows ending with the month
    containing `now`, ordered oldest -> newest. Each window ends one
    microsecond before the next month starts.
    """
    if count < 1:
        raise ValueError("month count must be >= 1")
    current = month_start(now)
    windows: List[MonthWindow] = []
    for offset in range(count - 1, -1, -1):
        start = add_months(current, -offset)
        end = add_months(start, 1) - timedelta(microseconds=1)
        windows.append(MonthWindow(start=start, end=end))
    return windows
