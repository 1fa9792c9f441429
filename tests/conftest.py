import os
from typing import Callable

import pytest

os.environ.setdefault("LEDGER_DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("LEDGER_TIMEZONE", "UTC")


class ManualTimer:
    def __init__(self, due: float, callback: Callable[[], None]) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualClock:
    """Timer backend whose time only moves when a test calls ``advance``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.timers: list[ManualTimer] = []

    def schedule(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self.now + delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> int:
        return sum(1 for t in self.timers if not t.cancelled and not t.fired)

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [
                t
                for t in self.timers
                if not t.cancelled and not t.fired and t.due <= target
            ]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.now = timer.due
            timer.fired = True
            timer.callback()
        self.now = target


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()
