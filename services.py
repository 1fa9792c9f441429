from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from collections import OrderedDict
from datetime import date
from pathlib import Path
from typing import Callable, Iterable, Mapping, Optional, Sequence

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import SessionLocal
from debounce import ScheduleFn
from ledger_view import LedgerSource, LedgerView
from models import LedgerEntry
from pagination import DEFAULT_PAGE_SIZE
from schemas import TransactionRecord

logger = logging.getLogger(__name__)


class LedgerUnavailableError(RuntimeError):
    pass


def get_current_user_id() -> int:
    return 1


def record_from_row(row: LedgerEntry) -> TransactionRecord:
    return TransactionRecord(
        id=row.id,
        date=row.date,
        description=row.name,
        amount=row.amount,
        category=row.category,
        avatar_ref=row.avatar,
        recurring=row.recurring,
        due_day=row.due_day,
        is_paid=row.is_paid,
        is_overdue=row.is_overdue,
    )


def records_from_raw(rows: Iterable[Mapping[str, object]]) -> list[TransactionRecord]:
    """Map raw ``{"name", "avatar", ...}`` rows; rows that cannot be read are skipped."""
    records: list[TransactionRecord] = []
    for idx, raw in enumerate(rows):
        data = dict(raw)
        if data.get("id") in (None, ""):
            data["id"] = f"row-{idx}"
        try:
            records.append(TransactionRecord.model_validate(data))
        except ValidationError as exc:
            logger.warning(f"ledger_row_skipped: index={idx} errors={exc.error_count()}")
    return records


class LedgerService:
    """Supplies the ledger snapshot: database first, JSON file as fallback.

    Snapshots are cached for ``ttl_secs``; :meth:`refresh` drops the cache so
    the next :meth:`load` fetches again.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        *,
        user_id: Optional[int] = None,
        fallback_path: Optional[Path] = None,
        ttl_secs: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session_factory = session_factory
        self.user_id = user_id or get_current_user_id()
        self.fallback_path = fallback_path
        self.ttl_secs = ttl_secs
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: Optional[list[TransactionRecord]] = None
        self._cached_at = 0.0

    def load(self) -> list[TransactionRecord]:
        with self._lock:
            now = self._clock()
            if self._cached is not None and now - self._cached_at < self.ttl_secs:
                return self._cached
            records = self._fetch()
            self._cached = records
            self._cached_at = now
            return records

    def refresh(self) -> None:
        with self._lock:
            self._cached = None
        logger.info("ledger_refresh: cache invalidated")

    def _fetch(self) -> list[TransactionRecord]:
        try:
            records = self._load_from_db()
        except SQLAlchemyError as exc:
            logger.warning(f"ledger_load: source=db failed ({exc.__class__.__name__})")
            if self.fallback_path is None:
                raise LedgerUnavailableError("Transactions are unavailable") from exc
            try:
                return self._load_fallback()
            except (OSError, ValueError) as fallback_exc:
                raise LedgerUnavailableError(
                    "Transactions are unavailable"
                ) from fallback_exc
        if records or self.fallback_path is None:
            logger.info(f"ledger_load: source=db count={len(records)}")
            return records
        try:
            return self._load_fallback()
        except (OSError, ValueError) as exc:
            logger.warning(f"ledger_load: source=fallback failed ({exc})")
            return records

    def _load_from_db(self) -> list[TransactionRecord]:
        session = self.session_factory()
        try:
            stmt = (
                select(LedgerEntry)
                .where(LedgerEntry.user_id == self.user_id)
                .order_by(LedgerEntry.date.desc(), LedgerEntry.id.desc())
            )
            return [record_from_row(row) for row in session.scalars(stmt).all()]
        finally:
            session.close()

    def _load_fallback(self) -> list[TransactionRecord]:
        path = self.fallback_path
        payload = json.loads(path.read_text(encoding="utf-8"))
        rows = payload.get("transactions") if isinstance(payload, dict) else None
        if not isinstance(rows, list):
            raise ValueError(f"{path} has no transactions list")
        records = records_from_raw(row for row in rows if isinstance(row, dict))
        logger.info(f"ledger_load: source=fallback count={len(records)}")
        return records


class ViewRegistry:
    """Live ledger views, one per open transactions page.

    Views are kept in least-recently-used order; opening a view beyond
    ``max_views`` tears down the oldest one.
    """

    def __init__(
        self,
        source: LedgerSource,
        schedule: ScheduleFn,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        debounce_delay: float = 0.2,
        max_views: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.source = source
        self.schedule = schedule
        self.page_size = page_size
        self.debounce_delay = debounce_delay
        self.max_views = max_views
        self._clock = clock
        self._views: OrderedDict[str, LedgerView] = OrderedDict()
        self._touched: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._views)

    def __contains__(self, view_id: object) -> bool:
        return view_id in self._views

    def open(
        self,
        params: Mapping[str, str],
        *,
        records: Optional[Sequence[TransactionRecord]] = None,
        today: Optional[date] = None,
    ) -> tuple[str, LedgerView]:
        if records is None:
            records = self.source.load()
        view = LedgerView(
            records,
            schedule=self.schedule,
            page_size=self.page_size,
            debounce_delay=self.debounce_delay,
            source=self.source,
        )
        view.mount(params, today=today)
        view_id = uuid.uuid4().hex
        self._views[view_id] = view
        self._touched[view_id] = self._clock()
        while len(self._views) > self.max_views:
            oldest = next(iter(self._views))
            self.close(oldest)
        logger.debug(f"view_open: id={view_id} live={len(self._views)}")
        return view_id, view

    def get(self, view_id: str) -> Optional[LedgerView]:
        view = self._views.get(view_id)
        if view is None:
            return None
        self._views.move_to_end(view_id)
        self._touched[view_id] = self._clock()
        return view

    def close(self, view_id: str) -> bool:
        view = self._views.pop(view_id, None)
        self._touched.pop(view_id, None)
        if view is None:
            return False
        view.teardown()
        return True

    def close_all(self) -> int:
        view_ids = list(self._views)
        for view_id in view_ids:
            self.close(view_id)
        return len(view_ids)

    def expire_idle(self, max_idle_secs: float) -> int:
        cutoff = self._clock() - max_idle_secs
        stale = [vid for vid, touched in self._touched.items() if touched < cutoff]
        for view_id in stale:
            self.close(view_id)
        if stale:
            logger.info(f"view_expiry: closed={len(stale)} live={len(self._views)}")
        return len(stale)

    def replace_all(self, records: Sequence[TransactionRecord]) -> int:
        for view in self._views.values():
            view.replace_ledger(records)
        return len(self._views)

    def refresh_all(self) -> int:
        self.source.refresh()
        return self.replace_all(self.source.load())
