from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class LedgerEntry(Base, TimestampMixin):
    """One stored transaction row.

    ``date`` is kept as the ISO-8601 text the row was written with; parsing
    happens in the pipeline so a bad value never blocks loading the ledger.
    """

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    date: Mapped[str] = mapped_column(String(40), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    avatar: Mapped[Optional[str]] = mapped_column(String(255))
    recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    due_day: Mapped[Optional[int]] = mapped_column(Integer)
    is_paid: Mapped[Optional[bool]] = mapped_column(Boolean)
    is_overdue: Mapped[Optional[bool]] = mapped_column(Boolean)

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_category", "user_id", "category"),
    )
