import calendar
from dataclasses import dataclass
from typing import Callable, Sequence

from schemas import TransactionRecord

UNKNOWN_MONTH = "Unknown date"
UNCATEGORIZED = "Uncategorized"


@dataclass(frozen=True)
class GroupStrategy:
    key: str
    display_name: str
    label: Callable[[TransactionRecord], str]

    def partition(
        self, records: Sequence[TransactionRecord]
    ) -> dict[str, list[TransactionRecord]]:
        # Groups appear in first-seen order and keep the input order inside.
        groups: dict[str, list[TransactionRecord]] = {}
        for record in records:
            groups.setdefault(self.label(record), []).append(record)
        return groups


def display_category(category: str) -> str:
    return category.capitalize()


def _category_label(record: TransactionRecord) -> str:
    return display_category(record.category) or UNCATEGORIZED


def _month_label(record: TransactionRecord) -> str:
    ts = record.timestamp
    if ts is None:
        return UNKNOWN_MONTH
    return f"{calendar.month_name[ts.month]} {ts.year}"


def _type_label(record: TransactionRecord) -> str:
    if record.amount is not None and record.amount >= 0:
        return "Income"
    return "Expenses"


def _recipient_label(record: TransactionRecord) -> str:
    return record.description


def build_group_strategies() -> dict[str, GroupStrategy]:
    strategies = [
        GroupStrategy("category", "By Category", _category_label),
        GroupStrategy("month", "By Month", _month_label),
        GroupStrategy("type", "Income vs. Expenses", _type_label),
        GroupStrategy("recipient", "By Recipient/Sender", _recipient_label),
    ]
    return {strategy.key: strategy for strategy in strategies}


def execute(
    records: Sequence[TransactionRecord], strategy: GroupStrategy
) -> dict[str, list[TransactionRecord]]:
    return strategy.partition(records)
