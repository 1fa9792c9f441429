"""Filter engine: named predicates combined with AND.

Active filters live in a :class:`FilterSet`, a mapping keyed by strategy
name. Installing a strategy whose name is already present replaces it, and
the ``category:``, ``search:`` and ``date:`` families hold at most one
member each, so a new search term evicts the previous one instead of
stacking on top of it.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Iterator, Mapping, Optional, Sequence

from periods import PERIOD_LABELS, Period
from schemas import TransactionRecord

CATEGORY_PREFIX = "category:"
SEARCH_PREFIX = "search:"
DATE_PREFIX = "date:"
SINGLETON_FAMILIES = (CATEGORY_PREFIX, SEARCH_PREFIX, DATE_PREFIX)

# Pot movements are recognised by their description as well as their category.
POT_CATEGORY_MARKERS: dict[str, tuple[str, ...]] = {
    "savings": ("savings pot", "transfer to pot", "adding to pot"),
    "withdrawal": ("withdrawal from", "pot withdrawal"),
    "return": ("returned funds", "pot balance returned", "deleted pot"),
}


@dataclass(frozen=True)
class FilterStrategy:
    name: str
    display_name: str
    predicate: Callable[[TransactionRecord], bool]

    def matches(self, record: TransactionRecord) -> bool:
        return self.predicate(record)

    @property
    def family(self) -> Optional[str]:
        return family_of(self.name)


def family_of(name: str) -> Optional[str]:
    for prefix in SINGLETON_FAMILIES:
        if name.startswith(prefix):
            return prefix
    return None


def category_filter(category: str) -> FilterStrategy:
    wanted = category.lower()
    markers = POT_CATEGORY_MARKERS.get(wanted, ())

    def _matches(record: TransactionRecord) -> bool:
        if record.category.lower() == wanted:
            return True
        description = record.description.lower()
        return any(marker in description for marker in markers)

    return FilterStrategy(
        name=f"{CATEGORY_PREFIX}{wanted}",
        display_name=category[:1].upper() + category[1:],
        predicate=_matches,
    )


def search_filter(term: str) -> FilterStrategy:
    """Case-insensitive substring match on description, category or amount.

    The amount is matched as text, so ``"12"`` hits 12, 120 and -12.5.
    """
    needle = term.lower().strip()

    def _matches(record: TransactionRecord) -> bool:
        if not needle:
            return True
        if needle in record.description.lower():
            return True
        if needle in record.category.lower():
            return True
        amount_text = record.amount_text
        return amount_text is not None and needle in amount_text

    return FilterStrategy(
        name=f"{SEARCH_PREFIX}{term}",
        display_name=f"Search: {term}",
        predicate=_matches,
    )


def income_filter() -> FilterStrategy:
    return FilterStrategy(
        name="income",
        display_name="Income",
        predicate=lambda record: record.amount is not None and record.amount > 0,
    )


def expense_filter() -> FilterStrategy:
    return FilterStrategy(
        name="expense",
        display_name="Expenses",
        predicate=lambda record: record.amount is not None and record.amount < 0,
    )


def date_range_filter(
    start: datetime, end: datetime, display_name: Optional[str] = None
) -> FilterStrategy:
    if start > end:
        raise ValueError("Start date must be before end date")

    def _matches(record: TransactionRecord) -> bool:
        ts = record.timestamp
        return ts is not None and start <= ts <= end

    return FilterStrategy(
        name=f"{DATE_PREFIX}{start.isoformat()}-{end.isoformat()}",
        display_name=display_name
        or f"{start.strftime('%d/%m/%Y')} - {end.strftime('%d/%m/%Y')}",
        predicate=_matches,
    )


def period_filter(period: Period) -> FilterStrategy:
    start, end = period.bounds()
    label = None if period.slug == "custom" else PERIOD_LABELS.get(period.slug)
    return date_range_filter(start, end, display_name=label)


def basic_filters() -> dict[str, FilterStrategy]:
    """Toggleable filters offered next to the search box."""
    return {f.name: f for f in (income_filter(), expense_filter())}


class FilterSet(Mapping[str, FilterStrategy]):
    def __init__(self, strategies: Iterable[FilterStrategy] = ()) -> None:
        self._filters: dict[str, FilterStrategy] = {}
        for strategy in strategies:
            self.add(strategy)

    def __getitem__(self, name: str) -> FilterStrategy:
        return self._filters[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._filters)

    def __len__(self) -> int:
        return len(self._filters)

    def add(self, strategy: FilterStrategy) -> None:
        family = strategy.family
        if family is not None:
            self.remove_family(family)
        self._filters.pop(strategy.name, None)
        self._filters[strategy.name] = strategy

    def remove(self, name: str) -> bool:
        return self._filters.pop(name, None) is not None

    def remove_family(self, prefix: str) -> bool:
        doomed = [name for name in self._filters if name.startswith(prefix)]
        for name in doomed:
            del self._filters[name]
        return bool(doomed)

    def family(self, prefix: str) -> Optional[FilterStrategy]:
        for name, strategy in self._filters.items():
            if name.startswith(prefix):
                return strategy
        return None

    def clear(self) -> None:
        self._filters.clear()

    def signature(self) -> tuple[str, ...]:
        return tuple(self._filters)


def execute(
    records: Sequence[TransactionRecord],
    active_filters: Iterable[FilterStrategy],
) -> list[TransactionRecord]:
    if isinstance(active_filters, Mapping):
        strategies = list(active_filters.values())
    else:
        strategies = list(active_filters)
    if not strategies:
        return list(records)
    return [
        record
        for record in records
        if all(strategy.matches(record) for strategy in strategies)
    ]
