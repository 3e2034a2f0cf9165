from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def _month_bounds(day: date) -> tuple[date, date]:
    first = day.replace(day=1)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return first, next_month - date.resolution


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Period:
    """Resolve a report range from a preset slug or explicit ISO dates.

    Explicit ``start``/``end`` always win. ``start`` after ``end`` is allowed
    and simply selects nothing.
    """
    today = today or date.today()
    if start and end:
        try:
            return Period("custom", date.fromisoformat(start), date.fromisoformat(end))
        except ValueError as exc:
            raise ValueError("Start and end must be ISO dates (YYYY-MM-DD)") from exc
    if period == "custom":
        raise ValueError("Start date and end date are required")
    if period == "last_7_days":
        return Period("last_7_days", today - timedelta(days=7), today)
    if period == "this_month":
        first, last = _month_bounds(today)
        return Period("this_month", first, last)
    if period == "last_month":
        last_month_end = today.replace(day=1) - date.resolution
        first, last = _month_bounds(last_month_end)
        return Period("last_month", first, last)
    if not period or period == "last_30_days":
        return Period("last_30_days", today - timedelta(days=30), today)
    raise ValueError(f"Unknown period: {period}")
