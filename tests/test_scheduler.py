import asyncio

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from config import Settings
from scheduler import SchedulerManager, SchedulerTimers
from schemas import TransactionRecord
from services import ViewRegistry


def _on_event_loop():
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


def test_timers_fire_once_and_cancel_cleanly():
    async def scenario():
        scheduler = AsyncIOScheduler(timezone="UTC")
        scheduler.start()
        timers = SchedulerTimers(scheduler)
        fired = []
        dropped = timers(0.05, lambda: fired.append("dropped"))
        dropped.cancel()
        kept = timers(0.05, lambda: fired.append("kept"))
        await asyncio.sleep(0.5)
        # Cancelling after the job ran is harmless.
        kept.cancel()
        scheduler.shutdown(wait=False)
        return fired

    assert asyncio.run(scenario()) == ["kept"]


class _Source:
    def __init__(self):
        self.records = [TransactionRecord(id="1", amount="5", category="bills")]
        self.refreshed = 0
        self.refreshed_on_loop = False

    def load(self):
        return self.records

    def refresh(self):
        self.refreshed += 1
        self.refreshed_on_loop = _on_event_loop()


def _settings():
    return Settings(
        database_url="sqlite:///:memory:", timezone="UTC", csrf_secret="test"
    )


def test_manager_refreshes_every_open_view():
    async def scenario():
        manager = SchedulerManager(_settings())
        source = _Source()
        registry = ViewRegistry(source, manager.timers)
        manager.start(registry)
        _, view = registry.open({})
        source.records = []
        await manager._refresh_views("test")
        total = view.snapshot().total_filtered_count
        jobs = {job.id for job in manager.scheduler.get_jobs()}
        manager.stop()
        return source, view, jobs, len(registry), total

    source, view, jobs, live, total = asyncio.run(scenario())
    assert source.refreshed == 1
    assert source.refreshed_on_loop is False
    assert total == 0
    assert view.closed is True
    assert live == 0
    assert {"ledger_refresh", "view_expiry"} <= jobs


def test_manager_without_registry_is_a_no_op():
    manager = SchedulerManager(_settings())
    asyncio.run(manager._refresh_views())
    asyncio.run(manager._expire_views())
    manager.stop()


def test_expiry_job_closes_idle_views():
    ticks = [0.0]
    manager = SchedulerManager(_settings())
    registry = ViewRegistry(_Source(), manager.timers, clock=lambda: ticks[0])
    manager.registry = registry
    _, idle = registry.open({})
    ticks[0] = 20 * 60
    _, active = registry.open({})
    ticks[0] = 31 * 60
    asyncio.run(manager._expire_views())
    assert idle.closed is True
    assert active.closed is False
    assert len(registry) == 1
