"""Sort engine.

Every strategy is a comparator over two records; :func:`execute` runs a
stable sort with it. Records whose date or amount cannot be parsed sort
after all parsable ones (in their existing order) for the strategies that
read that field.

``highest`` and ``lowest`` are two-tier orders: the sign of the amount is
the primary key and the amount itself the secondary key, both in the same
direction. Under ``highest`` income comes first (largest first) followed by
expenses from the smallest outflow to the largest; ``lowest`` is the exact
mirror image.
"""

import unicodedata
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from functools import cmp_to_key
from typing import Callable, Optional, Sequence, TypeVar

from schemas import TransactionRecord

T = TypeVar("T")

Comparator = Callable[[TransactionRecord, TransactionRecord], int]


class SortKey(str, Enum):
    latest = "latest"
    oldest = "oldest"
    a_z = "a-z"
    z_a = "z-a"
    highest = "highest"
    lowest = "lowest"


DEFAULT_SORT_KEY = SortKey.latest


@dataclass(frozen=True)
class SortStrategy:
    key: SortKey
    display_name: str
    compare: Comparator


def _cmp(a, b) -> int:
    return (a > b) - (a < b)


def _missing_last(a: Optional[T], b: Optional[T]) -> Optional[int]:
    if a is None and b is None:
        return 0
    if a is None:
        return 1
    if b is None:
        return -1
    return None


def collation_key(text: str) -> tuple[str, str, str]:
    """Accent- and case-insensitive first, then case, then raw text."""
    decomposed = unicodedata.normalize("NFKD", text)
    base = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return (base.casefold(), text.casefold(), text)


def _by_timestamp(descending: bool) -> Comparator:
    def compare(a: TransactionRecord, b: TransactionRecord) -> int:
        ta, tb = a.timestamp, b.timestamp
        missing = _missing_last(ta, tb)
        if missing is not None:
            return missing
        result = _cmp(ta, tb)
        return -result if descending else result

    return compare


def _by_description(descending: bool) -> Comparator:
    def compare(a: TransactionRecord, b: TransactionRecord) -> int:
        result = _cmp(collation_key(a.description), collation_key(b.description))
        return -result if descending else result

    return compare


def _by_tiered_amount(
    tier: Callable[[Decimal], int], descending: bool
) -> Comparator:
    def compare(a: TransactionRecord, b: TransactionRecord) -> int:
        missing = _missing_last(a.amount, b.amount)
        if missing is not None:
            return missing
        result = _cmp(tier(a.amount), tier(b.amount)) or _cmp(a.amount, b.amount)
        return -result if descending else result

    return compare


def build_sort_strategies() -> dict[SortKey, SortStrategy]:
    strategies = [
        SortStrategy(SortKey.latest, "Latest", _by_timestamp(descending=True)),
        SortStrategy(SortKey.oldest, "Oldest", _by_timestamp(descending=False)),
        SortStrategy(SortKey.a_z, "A to Z", _by_description(descending=False)),
        SortStrategy(SortKey.z_a, "Z to A", _by_description(descending=True)),
        SortStrategy(
            SortKey.highest,
            "Highest Amount",
            _by_tiered_amount(lambda amount: 1 if amount >= 0 else 0, True),
        ),
        SortStrategy(
            SortKey.lowest,
            "Lowest Amount",
            _by_tiered_amount(lambda amount: 0 if amount < 0 else 1, False),
        ),
    ]
    return {strategy.key: strategy for strategy in strategies}


def execute(
    records: Sequence[TransactionRecord], strategy: SortStrategy
) -> list[TransactionRecord]:
    return sorted(records, key=cmp_to_key(strategy.compare))
