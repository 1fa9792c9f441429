"""Debounce as a cancellable scheduled task.

A :class:`Debouncer` never owns a clock. It is given a ``schedule`` callable
that runs a callback after a delay and hands back a handle with
``cancel()``; the app wires that to APScheduler (see ``scheduler.py``) and
tests wire it to a manual clock.
"""

import logging
from typing import Callable, Generic, Optional, Protocol, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


ScheduleFn = Callable[[float, Callable[[], None]], TimerHandle]


class Debouncer(Generic[T]):
    def __init__(
        self,
        delay: float,
        callback: Callable[[T], None],
        schedule: ScheduleFn,
    ) -> None:
        if delay < 0:
            raise ValueError("delay must not be negative")
        self.delay = delay
        self._callback = callback
        self._schedule = schedule
        self._handle: Optional[TimerHandle] = None
        self._pending: Optional[T] = None
        self._generation = 0

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def push(self, value: T) -> None:
        """Supersede any scheduled emission with one for ``value``."""
        self.cancel()
        self._generation += 1
        generation = self._generation
        self._pending = value
        self._handle = self._schedule(self.delay, lambda: self._fire(generation))

    __call__ = push

    def cancel(self) -> bool:
        handle, self._handle = self._handle, None
        self._pending = None
        if handle is None:
            return False
        handle.cancel()
        return True

    def flush(self) -> bool:
        """Emit the pending value now instead of waiting for the delay."""
        if self._handle is None:
            return False
        value = self._pending
        self.cancel()
        self._callback(value)
        return True

    def _fire(self, generation: int) -> None:
        if generation != self._generation or self._handle is None:
            # Superseded after the timer had already been dispatched.
            logger.debug(f"debounce_skip: generation={generation}")
            return
        value = self._pending
        self._handle = None
        self._pending = None
        self._callback(value)
