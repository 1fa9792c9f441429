"""Mirror of the ledger query state in the address bar.

State only flows one way after mount: the view publishes ``category`` and
the debounced ``search`` term as a replace of the current URL. The URL is
read exactly once, by :meth:`NavigationSync.seed`, when a view is mounted.
Category and recipient clicks elsewhere in the app are plain links built by
:func:`category_link` and :func:`recipient_link`, i.e. a navigation that
mounts a fresh view.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Mapping, Optional
from urllib.parse import urlencode

logger = logging.getLogger(__name__)

LEDGER_PATH = "/transactions"
ALL_CATEGORIES = "all"
_ALL_ALIASES = {"", ALL_CATEGORIES, "all transactions"}


@dataclass(frozen=True)
class SeedState:
    category: str = ALL_CATEGORIES
    search: str = ""
    sort: Optional[str] = None
    group: Optional[str] = None
    period: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None


def normalize_category(name: Optional[str]) -> str:
    clean = (name or "").strip().lower()
    return ALL_CATEGORIES if clean in _ALL_ALIASES else clean


def canonical_params(category: str, search: str) -> list[tuple[str, str]]:
    params: list[tuple[str, str]] = []
    category = normalize_category(category)
    if category != ALL_CATEGORIES:
        params.append(("category", category))
    if search and search.strip():
        params.append(("search", search))
    return params


def canonical_query(category: str, search: str) -> str:
    return urlencode(canonical_params(category, search))


def ledger_url(query: str = "", path: str = LEDGER_PATH) -> str:
    return f"{path}?{query}" if query else path


def category_link(name: str, path: str = LEDGER_PATH) -> str:
    return ledger_url(canonical_query(name, ""), path)


def recipient_link(name: str, path: str = LEDGER_PATH) -> str:
    return ledger_url(canonical_query(ALL_CATEGORIES, name), path)


def read_seed(params: Mapping[str, str]) -> SeedState:
    def _get(key: str) -> Optional[str]:
        value = params.get(key)
        return value if value else None

    return SeedState(
        category=normalize_category(params.get("category")),
        search=params.get("search") or "",
        sort=_get("sort"),
        group=_get("group"),
        period=_get("period"),
        start=_get("start"),
        end=_get("end"),
    )


class NavigationSync:
    def __init__(
        self,
        replace: Optional[Callable[[str], None]] = None,
        path: str = LEDGER_PATH,
    ) -> None:
        self._replace = replace
        self.path = path
        self.query = ""
        self._seeded = False

    @property
    def seeded(self) -> bool:
        return self._seeded

    @property
    def location(self) -> str:
        return ledger_url(self.query, self.path)

    def seed(self, params: Mapping[str, str]) -> Optional[SeedState]:
        """Read the URL once. Later calls return ``None`` and change nothing."""
        if self._seeded:
            return None
        self._seeded = True
        state = read_seed(params)
        self.query = canonical_query(state.category, state.search)
        logger.debug(f"navigation_seed: query={self.query!r}")
        return state

    def publish(self, category: str, search: str) -> bool:
        query = canonical_query(category, search)
        if query == self.query:
            return False
        self.query = query
        if self._replace is not None:
            self._replace(self.location)
        return True

    def reset(self) -> None:
        self.query = ""
        self._seeded = False
