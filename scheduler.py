import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import Settings, get_settings
from services import ViewRegistry

logger = logging.getLogger(__name__)


class ScheduledCallback:
    """Handle for one delayed callback; ``cancel`` removes the job."""

    def __init__(self, job: Job) -> None:
        self.job = job

    def cancel(self) -> None:
        try:
            self.job.remove()
        except JobLookupError:
            # Already ran (date-triggered jobs are dropped after firing).
            logger.debug(f"timer_cancel: job={self.job.id} already gone")


class SchedulerTimers:
    """Runs callbacks after a delay as one-shot scheduler jobs.

    Coroutine jobs run on the scheduler's event loop, so callbacks land on
    the same thread that serves requests.
    """

    def __init__(self, scheduler: BaseScheduler) -> None:
        self.scheduler = scheduler

    def __call__(self, delay: float, callback: Callable[[], None]) -> ScheduledCallback:
        async def _run() -> None:
            callback()

        run_date = datetime.now(timezone.utc) + timedelta(seconds=delay)
        job = self.scheduler.add_job(
            _run,
            DateTrigger(run_date=run_date),
            misfire_grace_time=None,
        )
        return ScheduledCallback(job)


class SchedulerManager:
    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        self.scheduler = AsyncIOScheduler(timezone=self.settings.timezone)
        self.timers = SchedulerTimers(self.scheduler)
        self.registry: Optional[ViewRegistry] = None

    async def _refresh_views(self, source: str = "manual") -> None:
        registry = self.registry
        if registry is None:
            return
        logger.info(f"scheduler_run: job=ledger_refresh source={source}")
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, registry.source.refresh)
        records = await loop.run_in_executor(None, registry.source.load)
        count = registry.replace_all(records)
        logger.info(
            f"scheduler_run: job=ledger_refresh views={count} records={len(records)}"
        )

    async def _expire_views(self) -> None:
        if self.registry is None:
            return
        self.registry.expire_idle(self.settings.view_idle_minutes * 60)

    def start(self, registry: ViewRegistry) -> None:
        self.registry = registry

        self.scheduler.add_job(
            self._refresh_views,
            IntervalTrigger(minutes=self.settings.refresh_interval_minutes),
            args=["interval"],
            id="ledger_refresh",
            replace_existing=True,
            misfire_grace_time=300,
        )
        self.scheduler.add_job(
            self._expire_views,
            IntervalTrigger(minutes=5),
            id="view_expiry",
            replace_existing=True,
            misfire_grace_time=60,
        )

        self.scheduler.start()
        logger.info(
            "Scheduler started with ledger refresh every "
            f"{self.settings.refresh_interval_minutes} min and view expiry"
        )

    def stop(self) -> None:
        if self.registry is not None:
            self.registry.close_all()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
