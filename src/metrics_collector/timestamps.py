from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterator


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            return ensure_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def format_timestamp(value: datetime) -> str:
    """Render as fixed-width `YYYY-MM-DDTHH:MM:SS.mmmZ` so string order is time order."""
    utc = ensure_utc(value)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def day_prefix(value: date | datetime) -> str:
    if isinstance(value, datetime):
        return ensure_utc(value).date().isoformat()
    return value.isoformat()


def prefix_to_day(timestamp: str) -> date | None:
    """Calendar day named by the first ten characters of an ISO-8601 string."""
    try:
        return date.fromisoformat(timestamp[:10])
    except ValueError:
        return None


def iter_days(start_day: date, end_day: date) -> Iterator[date]:
    current = start_day
    while current <= end_day:
        yield current
        current += timedelta(days=1)
