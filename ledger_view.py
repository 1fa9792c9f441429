"""Query pipeline for one ledger view.

:class:`LedgerView` owns the query state of a single transactions page and
derives what the page shows from it::

    ledger -> filters -> sort -> paginate -> (group the revealed slice)

Filtering and sorting are memoized on the ledger version, the active
filter set and the sort key, so reading :meth:`LedgerView.snapshot` after a
pagination or grouping change does not re-run them. Every state change
goes through a method here; the address bar is only written through the
view's :class:`~navigation.NavigationSync`.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Iterable, Mapping, Optional, Protocol, Sequence, Union

import filters as filter_engine
import grouping as group_engine
import sorting as sort_engine
from debounce import Debouncer, ScheduleFn
from filters import (
    CATEGORY_PREFIX,
    DATE_PREFIX,
    POT_CATEGORY_MARKERS,
    SEARCH_PREFIX,
    FilterSet,
    FilterStrategy,
    category_filter,
    period_filter,
    search_filter,
)
from grouping import GroupStrategy, build_group_strategies, display_category
from navigation import ALL_CATEGORIES, NavigationSync, normalize_category
from pagination import DEFAULT_PAGE_SIZE, PaginationWindow
from periods import Period, resolve_period
from schemas import StrategyOption, TransactionRecord
from sorting import (
    DEFAULT_SORT_KEY,
    SortKey,
    SortStrategy,
    build_sort_strategies,
    collation_key,
)

logger = logging.getLogger(__name__)

ALL_TRANSACTIONS_LABEL = "All Transactions"

EVENT_CHANGED = "changed"
EVENT_SEARCH_SETTLED = "search_settled"
EVENT_CLOSED = "closed"

Listener = Callable[[str], None]


class UnknownStrategyError(ValueError):
    pass


class ViewClosedError(RuntimeError):
    pass


class LedgerSource(Protocol):
    def load(self) -> list[TransactionRecord]: ...

    def refresh(self) -> None: ...


class StrategyRegistry:
    """Sort and group strategies available to one view."""

    def __init__(
        self,
        sorts: Mapping[SortKey, SortStrategy],
        groups: Mapping[str, GroupStrategy],
    ) -> None:
        self.sorts = dict(sorts)
        self.groups = dict(groups)

    @classmethod
    def default(cls) -> "StrategyRegistry":
        return cls(build_sort_strategies(), build_group_strategies())

    def sort(self, key: Union[SortKey, str]) -> SortStrategy:
        try:
            return self.sorts[SortKey(key)]
        except (KeyError, ValueError) as exc:
            raise UnknownStrategyError(f"Unknown sort key: {key}") from exc

    def group(self, key: str) -> GroupStrategy:
        try:
            return self.groups[key]
        except KeyError as exc:
            raise UnknownStrategyError(f"Unknown group key: {key}") from exc

    def sort_options(self) -> list[StrategyOption]:
        return [
            StrategyOption(value=s.key.value, label=s.display_name)
            for s in self.sorts.values()
        ]

    def group_options(self) -> list[StrategyOption]:
        return [
            StrategyOption(value=g.key, label=g.display_name)
            for g in self.groups.values()
        ]


def available_categories(records: Iterable[TransactionRecord]) -> list[str]:
    """Category choices for the filter dropdown, pot categories always included."""
    seen: set[str] = {display_category(pot) for pot in POT_CATEGORY_MARKERS}
    for record in records:
        category = display_category(record.category)
        if category:
            seen.add(category)
    return [ALL_TRANSACTIONS_LABEL, *sorted(seen, key=collation_key)]


@dataclass(frozen=True)
class LedgerSnapshot:
    visible_records: list[TransactionRecord]
    total_filtered_count: int
    has_more: bool
    grouped_records: Optional[dict[str, list[TransactionRecord]]]
    available_categories: list[str]
    available_sort_options: list[StrategyOption]
    available_group_options: list[StrategyOption]
    search_term: str = ""
    debounced_search_term: str = ""
    category: str = ALL_CATEGORIES
    sort_key: str = DEFAULT_SORT_KEY.value
    group_key: Optional[str] = None
    revealed_count: int = DEFAULT_PAGE_SIZE
    period: Optional[Period] = None
    active_filters: list[StrategyOption] = field(default_factory=list)
    query_string: str = ""


class LedgerView:
    def __init__(
        self,
        records: Sequence[TransactionRecord] = (),
        *,
        schedule: ScheduleFn,
        registry: Optional[StrategyRegistry] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        debounce_delay: float = 0.2,
        replace_url: Optional[Callable[[str], None]] = None,
        source: Optional[LedgerSource] = None,
    ) -> None:
        self.registry = registry or StrategyRegistry.default()
        self.navigation = NavigationSync(replace=replace_url)
        self.source = source
        self._records: tuple[TransactionRecord, ...] = tuple(records)
        self._ledger_version = 0
        self._window = PaginationWindow(page_size)
        self._debouncer: Debouncer[str] = Debouncer(
            debounce_delay, self._on_search_settled, schedule
        )
        self._listeners: list[Listener] = []
        self._closed = False
        self._derived_key: Optional[tuple] = None
        self._derived: list[TransactionRecord] = []
        self._categories_key: Optional[int] = None
        self._categories: list[str] = []
        self._reset_state()

    def _reset_state(self) -> None:
        self.search_term = ""
        self.debounced_search_term = ""
        self.category = ALL_CATEGORIES
        self.sort_key: SortKey = DEFAULT_SORT_KEY
        self.group_key: Optional[str] = None
        self.period: Optional[Period] = None
        self._filters = FilterSet()
        self._filters_version = 0
        self._window.reset()

    # -- lifecycle -------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def records(self) -> tuple[TransactionRecord, ...]:
        return self._records

    @property
    def revealed_count(self) -> int:
        return self._window.revealed_count

    @property
    def active_filters(self) -> FilterSet:
        return self._filters

    @property
    def search_pending(self) -> bool:
        return self._debouncer.pending

    def mount(self, params: Mapping[str, str], *, today: Optional[date] = None) -> bool:
        """Seed the query state from the URL the view was opened with.

        Only the first call has any effect.
        """
        self._ensure_open()
        seed = self.navigation.seed(params)
        if seed is None:
            return False
        if seed.category != ALL_CATEGORIES:
            self.category = seed.category
            self._filters.add(category_filter(seed.category))
        if seed.search:
            self.search_term = seed.search
            self._install_search(seed.search)
        if seed.sort:
            try:
                self.sort_key = self.registry.sort(seed.sort).key
            except UnknownStrategyError:
                logger.warning(f"view_mount: ignoring sort={seed.sort!r}")
        if seed.group:
            if seed.group in self.registry.groups:
                self.group_key = seed.group
            else:
                logger.warning(f"view_mount: ignoring group={seed.group!r}")
        if seed.period:
            try:
                self._install_period(
                    resolve_period(seed.period, seed.start, seed.end, today=today)
                )
            except ValueError as exc:
                logger.warning(f"view_mount: ignoring period={seed.period!r} ({exc})")
        self._filters_changed()
        self._notify(EVENT_CHANGED)
        return True

    def teardown(self) -> None:
        if self._closed:
            return
        self._debouncer.cancel()
        self._closed = True
        self._notify(EVENT_CLOSED)
        self._listeners.clear()
        self._reset_state()
        self.navigation.reset()
        logger.debug("view_teardown")

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._ensure_open()
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # -- ledger data -----------------------------------------------------

    def replace_ledger(self, records: Sequence[TransactionRecord]) -> None:
        """Swap in a refreshed ledger; selections and pagination are kept."""
        self._ensure_open()
        self._records = tuple(records)
        self._ledger_version += 1
        self._notify(EVENT_CHANGED)

    def refresh(self) -> None:
        self._ensure_open()
        if self.source is None:
            raise RuntimeError("LedgerView has no source to refresh from")
        self.source.refresh()
        self.replace_ledger(self.source.load())

    # -- query operations ------------------------------------------------

    def set_search_term(self, text: str) -> None:
        self._ensure_open()
        if text == self.search_term and not self._debouncer.pending:
            return
        self.search_term = text
        self._debouncer.push(text)
        self._notify(EVENT_CHANGED)

    def clear_search(self) -> None:
        self._ensure_open()
        self._debouncer.cancel()
        self.search_term = ""
        self._apply_search("")
        self._notify(EVENT_CHANGED)

    def set_category(self, name: str) -> None:
        self._ensure_open()
        category = normalize_category(name)
        if category == self.category:
            return
        self.category = category
        if category == ALL_CATEGORIES:
            self._filters.remove_family(CATEGORY_PREFIX)
        else:
            self._filters.add(category_filter(category))
        self._filters_changed()
        self._publish()
        self._notify(EVENT_CHANGED)

    def set_sort_key(self, key: Union[SortKey, str]) -> None:
        self._ensure_open()
        strategy = self.registry.sort(key)
        if strategy.key == self.sort_key:
            return
        self.sort_key = strategy.key
        self._window.reset()
        self._notify(EVENT_CHANGED)

    def set_group_key(self, key: Optional[str]) -> None:
        self._ensure_open()
        if key is not None:
            self.registry.group(key)
        if key == self.group_key:
            return
        self.group_key = key
        self._window.reset()
        self._notify(EVENT_CHANGED)

    def set_period(
        self,
        slug: Optional[str],
        start: Optional[str] = None,
        end: Optional[str] = None,
        *,
        today: Optional[date] = None,
    ) -> None:
        self._ensure_open()
        period = resolve_period(slug, start, end, today=today)
        if period == self.period:
            return
        self._install_period(period)
        self._filters_changed()
        self._notify(EVENT_CHANGED)

    def load_more(self) -> bool:
        self._ensure_open()
        grew = self._window.load_more(len(self._filtered_sorted()))
        if grew:
            self._notify(EVENT_CHANGED)
        return grew

    def add_filter(self, strategy: FilterStrategy) -> None:
        self._ensure_open()
        family = strategy.family
        if family == CATEGORY_PREFIX:
            self.category = normalize_category(strategy.name[len(family):])
        elif family == SEARCH_PREFIX:
            self._debouncer.cancel()
            term = strategy.name[len(family):]
            self.search_term = term
            self.debounced_search_term = term
        elif family == DATE_PREFIX:
            self.period = None
        self._filters.add(strategy)
        self._filters_changed()
        self._publish()
        self._notify(EVENT_CHANGED)

    def remove_filter(self, name: str) -> bool:
        self._ensure_open()
        if name not in self._filters:
            return False
        self._filters.remove(name)
        family = filter_engine.family_of(name)
        if family == CATEGORY_PREFIX:
            self.category = ALL_CATEGORIES
        elif family == SEARCH_PREFIX:
            self._debouncer.cancel()
            self.search_term = ""
            self.debounced_search_term = ""
        elif family == DATE_PREFIX:
            self.period = None
        self._filters_changed()
        self._publish()
        self._notify(EVENT_CHANGED)
        return True

    def clear_filters(self) -> None:
        self._ensure_open()
        self._debouncer.cancel()
        self._filters.clear()
        self.category = ALL_CATEGORIES
        self.search_term = ""
        self.debounced_search_term = ""
        self.period = None
        self._filters_changed()
        self._publish()
        self._notify(EVENT_CHANGED)

    # -- derivation ------------------------------------------------------

    def snapshot(self) -> LedgerSnapshot:
        self._ensure_open()
        ordered = self._filtered_sorted()
        visible = self._window.visible(ordered)
        grouped = None
        if self.group_key is not None:
            grouped = group_engine.execute(
                visible, self.registry.group(self.group_key)
            )
        return LedgerSnapshot(
            visible_records=visible,
            total_filtered_count=len(ordered),
            has_more=self._window.has_more(len(ordered)),
            grouped_records=grouped,
            available_categories=self._available_categories(),
            available_sort_options=self.registry.sort_options(),
            available_group_options=self.registry.group_options(),
            search_term=self.search_term,
            debounced_search_term=self.debounced_search_term,
            category=self.category,
            sort_key=self.sort_key.value,
            group_key=self.group_key,
            revealed_count=self._window.revealed_count,
            period=self.period,
            active_filters=[
                StrategyOption(value=s.name, label=s.display_name)
                for s in self._filters.values()
            ],
            query_string=self.navigation.query,
        )

    def _filtered_sorted(self) -> list[TransactionRecord]:
        key = (self._ledger_version, self._filters_version, self.sort_key)
        if key != self._derived_key:
            filtered = filter_engine.execute(self._records, self._filters)
            self._derived = sort_engine.execute(
                filtered, self.registry.sort(self.sort_key)
            )
            self._derived_key = key
        return self._derived

    def _available_categories(self) -> list[str]:
        if self._categories_key != self._ledger_version:
            self._categories = available_categories(self._records)
            self._categories_key = self._ledger_version
        return self._categories

    # -- internals -------------------------------------------------------

    def _on_search_settled(self, text: str) -> None:
        if self._closed:
            return
        changed = self._apply_search(text)
        if changed:
            self._notify(EVENT_CHANGED)
        self._notify(EVENT_SEARCH_SETTLED)

    def _apply_search(self, text: str) -> bool:
        if text == self.debounced_search_term:
            return False
        self._install_search(text)
        self._filters_changed()
        self._publish()
        return True

    def _install_search(self, text: str) -> None:
        self.debounced_search_term = text
        if text.strip():
            self._filters.add(search_filter(text))
        else:
            self._filters.remove_family(SEARCH_PREFIX)

    def _install_period(self, period: Optional[Period]) -> None:
        self.period = period
        if period is None:
            self._filters.remove_family(DATE_PREFIX)
        else:
            self._filters.add(period_filter(period))

    def _filters_changed(self) -> None:
        self._filters_version += 1
        self._window.reset()

    def _publish(self) -> None:
        self.navigation.publish(self.category, self.debounced_search_term)

    def _notify(self, event: str) -> None:
        for listener in list(self._listeners):
            listener(event)

    def _ensure_open(self) -> None:
        if self._closed:
            raise ViewClosedError("Ledger view has been torn down")
