"""Date helpers for the booklet: Japanese-era dates and itinerary timestamps.

Everything is evaluated in Asia/Tokyo. Invalid or missing values never raise;
they come back as ``None`` / empty strings so callers can simply omit them.
"""
from __future__ import annotations

import math
from datetime import date, datetime, timezone
from typing import Any, NamedTuple, Optional, Tuple
from zoneinfo import ZoneInfo

from shiori.schemas import NO_TIME

TOKYO = ZoneInfo("Asia/Tokyo")

# (first day of the era, name), newest first.
_ERAS: Tuple[Tuple[date, str], ...] = (
    (date(2019, 5, 1), "令和"),
    (date(1989, 1, 8), "平成"),
    (date(1926, 12, 25), "昭和"),
    (date(1912, 7, 30), "大正"),
    (date(1868, 9, 8), "明治"),
)
_WEEKDAYS = ("月", "火", "水", "木", "金", "土", "日")
_FALLBACK_FORMATS = (
    "%Y/%m/%d",
    "%Y/%m/%d %H:%M",
    "%Y/%m/%d %H:%M:%S",
    "%Y:%m:%d %H:%M:%S",
)


class JpDateParts(NamedTuple):
    era: str
    year: str
    month: int
    day: int
    weekday: str
    gregorian_year: int


def to_valid_datetime(value: Any) -> Optional[datetime]:
    """Coerce ``value`` into a Tokyo-local datetime, or ``None`` when it is unusable.

    Numbers are epoch milliseconds. Naive values (including date-only strings)
    are read as Tokyo wall-clock time. Instants whose Tokyo date falls outside
    the representable range are unusable too.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _in_tokyo(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=TOKYO)
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        try:
            return _in_tokyo(datetime.fromtimestamp(value / 1000, tz=timezone.utc))
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    parsed: Optional[datetime] = None
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        for fmt in _FALLBACK_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return None
    return _in_tokyo(parsed)


def _in_tokyo(dt: datetime) -> Optional[datetime]:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=TOKYO)
    try:
        return dt.astimezone(TOKYO)
    except (OverflowError, ValueError):
        return None


def jp_calendar_parts(dt: datetime) -> JpDateParts:
    local = dt.astimezone(TOKYO)
    day = local.date()
    era_name, era_year = "", str(local.year)
    for start, name in _ERAS:
        if day >= start:
            era_name = name
            offset = local.year - start.year + 1
            era_year = "元" if offset == 1 else str(offset)
            break
    return JpDateParts(
        era=era_name,
        year=era_year,
        month=local.month,
        day=local.day,
        weekday=_WEEKDAYS[local.weekday()],
        gregorian_year=local.year,
    )


def format_jp_date(value: Any) -> str:
    """``令和7年5月10日(土)`` style date, or ``""`` when ``value`` is invalid."""
    dt = to_valid_datetime(value)
    if dt is None:
        return ""
    p = jp_calendar_parts(dt)
    return f"{p.era}{p.year}年{p.month}月{p.day}日({p.weekday})"


def format_date_range(start: Any, end: Any) -> str:
    """Format the trip period; the end date drops era/year (and month when shared)."""
    sd = to_valid_datetime(start)
    ed = to_valid_datetime(end)
    if sd is None and ed is None:
        return ""
    if sd is None or ed is None:
        return format_jp_date(sd or ed)

    sp = jp_calendar_parts(sd)
    ep = jp_calendar_parts(ed)
    start_text = f"{sp.era}{sp.year}年{sp.month}月{sp.day}日({sp.weekday})"
    if (sp.gregorian_year, sp.month) == (ep.gregorian_year, ep.month):
        end_text = f"{ep.day}日({ep.weekday})"
    else:
        end_text = f"{ep.month}月{ep.day}日({ep.weekday})"
    return f"{start_text}〜{end_text}"


def format_event_datetime(value: Any) -> Tuple[Optional[str], str, Optional[float]]:
    """Return ``(YYYY/MM/DD, HH:MM, epoch_ms)`` for an itinerary timestamp.

    Only strings are accepted. Unusable values yield ``(None, "—", None)``.
    """
    if not isinstance(value, str):
        return None, NO_TIME, None
    dt = to_valid_datetime(value)
    if dt is None:
        return None, NO_TIME, None
    local = dt.astimezone(TOKYO)
    return local.strftime("%Y/%m/%d"), local.strftime("%H:%M"), dt.timestamp() * 1000
