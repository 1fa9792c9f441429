import calendar
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from schemas import parse_timestamp


def format_currency(amount: Optional[Decimal], symbol: str = "£") -> str:
    """Absolute value with thousands separators, e.g. ``-1234.5`` -> ``£1,234.50``."""
    if amount is None:
        return "-"
    return f"{symbol}{abs(amount):,.2f}"


def signed_currency(amount: Optional[Decimal], symbol: str = "£") -> str:
    if amount is None:
        return "-"
    sign = "+" if amount >= 0 else "-"
    return f"{sign}{format_currency(amount, symbol)}"


def format_transaction_date(value: str) -> str:
    ts = parse_timestamp(value)
    if ts is None:
        return "Invalid date"
    return ts.strftime("%d/%m/%Y")


def is_over_a_month_old(value: str, *, now: Optional[datetime] = None) -> bool:
    ts = parse_timestamp(value)
    if ts is None:
        return False
    now = now or datetime.now(timezone.utc)
    month = now.month - 1 or 12
    year = now.year - 1 if now.month == 1 else now.year
    # Clamp the day so 31 March looks back to the end of February.
    day = min(now.day, calendar.monthrange(year, month)[1])
    return ts < now.replace(year=year, month=month, day=day)
