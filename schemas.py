import logging
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)


def parse_amount(value: Any) -> Optional[Decimal]:
    """Best-effort decimal parse. Returns ``None`` instead of raising."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        amount = Decimal(str(value))
    elif isinstance(value, str):
        clean = value.strip().replace("£", "").replace(",", "").replace(" ", "")
        if not clean:
            return None
        try:
            amount = Decimal(clean)
        except InvalidOperation:
            return None
    else:
        return None
    if not amount.is_finite():
        return None
    return amount


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse an ISO-8601 date or date-time. Naive values are read as UTC."""
    text = (value or "").strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def amount_to_text(amount: Decimal) -> str:
    # Shortest plain rendering: 100.00 -> "100", -12.50 -> "-12.5".
    if amount == amount.to_integral_value():
        return str(int(amount))
    return format(amount.normalize(), "f")


class TransactionRecord(BaseModel):
    """Immutable ledger row as seen by the query pipeline."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    date: str = ""
    description: str = Field(
        default="", validation_alias=AliasChoices("description", "name")
    )
    amount: Optional[Decimal] = None
    category: str = ""
    avatar_ref: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("avatar_ref", "avatarRef", "avatar")
    )
    recurring: Optional[bool] = None
    is_paid: Optional[bool] = Field(
        default=None, validation_alias=AliasChoices("is_paid", "isPaid")
    )
    is_overdue: Optional[bool] = Field(
        default=None, validation_alias=AliasChoices("is_overdue", "isOverdue")
    )
    due_day: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("due_day", "dueDay")
    )

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("date", mode="before")
    @classmethod
    def _coerce_date(cls, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, (date, datetime)):
            return value.isoformat()
        return str(value)

    @field_validator("description", "category", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, value: Any) -> Optional[Decimal]:
        amount = parse_amount(value)
        if amount is None and value is not None:
            logger.debug(f"record_parse: unparsable amount={value!r}")
        return amount

    @field_validator("due_day", mode="before")
    @classmethod
    def _coerce_due_day(cls, value: Any) -> Optional[int]:
        if value is None or value == "":
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    @property
    def timestamp(self) -> Optional[datetime]:
        return parse_timestamp(self.date)

    @property
    def amount_text(self) -> Optional[str]:
        if self.amount is None:
            return None
        return amount_to_text(self.amount)


class StrategyOption(BaseModel):
    value: str
    label: str
