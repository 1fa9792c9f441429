from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def bounds(self) -> tuple[datetime, datetime]:
        """Inclusive UTC bounds covering every instant of ``start``..``end``."""
        return (
            datetime.combine(self.start, time.min, tzinfo=timezone.utc),
            datetime.combine(self.end, time.max, tzinfo=timezone.utc),
        )


PERIOD_LABELS = {
    "all": "All time",
    "this_month": "This month",
    "last_month": "Last month",
    "last_90_days": "Last 90 days",
    "custom": "Custom range",
}


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Optional[Period]:
    """Turn the ``period``/``start``/``end`` query values into a Period.

    ``None`` means no date constraint.
    """
    today = today or date.today()
    if not period or period == "all":
        return None
    if period == "last_month":
        first_this = today.replace(day=1)
        last_month_end = first_this - date.resolution
        last_month_start = last_month_end.replace(day=1)
        return Period("last_month", last_month_start, last_month_end)
    if period == "last_90_days":
        return Period("last_90_days", today - timedelta(days=89), today)
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)
    if period == "this_month":
        first = today.replace(day=1)
        if first.month == 12:
            next_month = first.replace(year=first.year + 1, month=1)
        else:
            next_month = first.replace(month=first.month + 1)
        return Period("this_month", first, next_month - date.resolution)
    raise ValueError(f"Unknown period: {period}")
