from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

from dateutil.relativedelta import relativedelta

_RELATIVE_PATTERN = re.compile(r"^(\d+)\s*([a-z]+)(?:\s+ago)?$")
_MONTH_DAY_PATTERN = re.compile(
    r"^(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)\w*\s+(\d{1,2})$"
)
_MONTHS = {
    name: index
    for index, name in enumerate(
        ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"],
        start=1,
    )
}

# unit label -> canonical unit
_UNITS = {
    "s": "s", "sec": "s", "secs": "s", "second": "s", "seconds": "s",
    "m": "m", "min": "m", "mins": "m", "minute": "m", "minutes": "m",
    "h": "h", "hr": "h", "hrs": "h", "hour": "h", "hours": "h",
    "d": "d", "day": "d", "days": "d",
    "w": "w", "wk": "w", "wks": "w", "week": "w", "weeks": "w",
    "mo": "mo", "mos": "mo", "month": "mo", "months": "mo",
    "y": "y", "yr": "y", "yrs": "y", "year": "y", "years": "y",
}


def _delta_for(value: int, unit: str) -> timedelta | relativedelta:
    if unit == "s":
        return timedelta(seconds=value)
    if unit == "m":
        return timedelta(minutes=value)
    if unit == "h":
        return timedelta(hours=value)
    if unit == "d":
        return timedelta(days=value)
    if unit == "w":
        return timedelta(days=value * 7)
    if unit == "mo":
        return relativedelta(months=value)
    return relativedelta(years=value)


def parse_relative_time(text: str | None, now: datetime | None = None) -> datetime | None:
    """Turn a relative time label such as ``"2h"`` or ``"3mo"`` into an
    absolute UTC timestamp by subtracting it from *now*.

    Also understands ``"now"`` / ``"just now"`` and ``"Jan 14"`` style dates.
    Returns ``None`` for anything unrecognised.
    """
    if not text:
        return None

    now = now or datetime.now(tz=timezone.utc)
    label = str(text).strip().lower()

    if label in ("now", "just now"):
        return now

    match = _RELATIVE_PATTERN.match(label)
    if match:
        unit = _UNITS.get(match.group(2))
        if unit is None:
            return None
        return now - _delta_for(int(match.group(1)), unit)

    match = _MONTH_DAY_PATTERN.match(label)
    if match:
        month = _MONTHS[match.group(1)[:3]]
        day = int(match.group(2))
        try:
            candidate = now.replace(month=month, day=day, hour=12, minute=0, second=0, microsecond=0)
        except ValueError:
            return None
        if candidate > now:
            candidate = candidate - relativedelta(years=1)
        return candidate

    return None
