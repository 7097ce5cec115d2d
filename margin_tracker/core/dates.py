"""Date helpers shared by models, aggregation and sync code.

Timestamps are stored as ISO-8601 strings, dates as ``YYYY-MM-DD`` strings.
"""
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def parse_datetime(value: Union[str, date, datetime, None]) -> Optional[datetime]:
    """
    Parse an ISO string (or date/datetime) into an aware UTC datetime.

    Returns None for empty values and for text that is not an ISO date.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = value.strip().replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            try:
                parsed = datetime.fromisoformat(text[:10])
            except ValueError:
                return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def days_ago(days: int) -> datetime:
    return utc_now() - timedelta(days=days)


def month_label(value: datetime) -> str:
    """Short month label such as ``Jan 2025``."""
    return value.strftime("%b %Y")


def add_months(value: datetime, months: int) -> datetime:
    """Shift to the first day of the month ``months`` away from ``value``."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    return value.replace(year=year, month=month_index % 12 + 1, day=1,
                         hour=0, minute=0, second=0, microsecond=0)
