from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional, Tuple

from src.core.errors import BadRequestError


def resolve_report_window(
    from_date: Optional[date], to_date: Optional[date]
) -> Tuple[date, date]:
    """Default to the current month to date; reject inverted windows."""
    today = date.today()
    start = from_date or today.replace(day=1)
    end = to_date or today
    if start > end:
        raise BadRequestError("from_date must be on or before to_date")
    return start, end


def day_bounds_utc(from_date: date, to_date: date) -> Tuple[str, str]:
    return (
        f"{from_date.isoformat()}T00:00:00.000Z",
        f"{to_date.isoformat()}T23:59:59.999Z",
    )


def salary_period(to_date: date) -> Tuple[int, int]:
    return to_date.month, to_date.year


def parse_timestamp(value: object) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        text = value.strip().replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def within_window(value: object, from_date: date, to_date: date) -> bool:
    parsed = parse_timestamp(value)
    if parsed is None:
        return False
    day = parsed.astimezone(timezone.utc).date()
    return from_date <= day <= to_date
