from dataclasses import dataclass
from datetime import date
from typing import Optional


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def month_period(day: date) -> Period:
    first = day.replace(day=1)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return Period("this_month", first, next_month - date.resolution)


def previous_month_period(day: date) -> Period:
    last_month_end = day.replace(day=1) - date.resolution
    return Period("last_month", last_month_end.replace(day=1), last_month_end)


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: date,
) -> Optional[Period]:
    if not period or period == "all":
        return None
    if period == "this_month":
        return month_period(today)
    if period == "last_month":
        return previous_month_period(today)
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)
    raise ValueError(f"Unknown period: {period}")
