from typing import Sequence, TypeVar

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 15


class PaginationWindow:
    """Reveals a growing prefix of a sequence, one page at a time."""

    def __init__(self, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self.page_size = page_size
        self.revealed_count = page_size

    def visible(self, records: Sequence[T]) -> list[T]:
        return list(records[: self.revealed_count])

    def has_more(self, total: int) -> bool:
        return self.revealed_count < total

    def load_more(self, total: int) -> bool:
        """Reveal one more page, capped at ``total``. Returns True if it grew."""
        if not self.has_more(total):
            return False
        self.revealed_count = min(self.revealed_count + self.page_size, total)
        return True

    def reset(self) -> bool:
        changed = self.revealed_count != self.page_size
        self.revealed_count = self.page_size
        return changed
