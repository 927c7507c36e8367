"""Date and time parsing for upstream timestamps."""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Optional, Sequence

DEFAULT_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%d/%m/%Y", "%b %d, %Y", "%B %d, %Y")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (``Z`` suffix allowed) or pass a datetime through."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def parse_date(value: Any, formats: Sequence[str] = DEFAULT_DATE_FORMATS) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str):
        return None
    value = value.strip()
    stamp = parse_timestamp(value)
    if stamp is not None:
        return stamp.date()
    for fmt in formats:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def format_time(value: Any) -> str:
    """Render the clock part of a timestamp the way receipts show it (``02:15:00 PM``)."""
    stamp = parse_timestamp(value)
    if stamp is None:
        return ""
    return stamp.strftime("%I:%M:%S %p")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_now() -> str:
    return utc_now().isoformat().replace("+00:00", "Z")


__all__ = ["parse_timestamp", "parse_date", "format_time", "utc_now", "iso_now", "DEFAULT_DATE_FORMATS"]
