"""
Cancellable timers behind one small interface.

Components never call ``time.sleep`` or ``threading.Timer`` directly; they
take a Scheduler so tests can swap in ManualScheduler and drive the clock.
"""

import heapq
import itertools
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Tuple

log = logging.getLogger("cocktailbot.scheduler")


class TaskHandle:
    """Handle returned by call_later/call_every; cancel() is idempotent."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()


class Scheduler(ABC):

    @abstractmethod
    def now(self) -> float:
        """Monotonic seconds."""

    @abstractmethod
    def sleep(self, seconds: float) -> None:
        """Block the caller for ``seconds``."""

    @abstractmethod
    def call_later(self, delay: float, fn: Callable[[], None], name: str = "") -> TaskHandle:
        """Run ``fn`` once after ``delay`` seconds."""

    @abstractmethod
    def call_every(self, interval: float, fn: Callable[[], None], name: str = "") -> TaskHandle:
        """
        Run ``fn`` every ``interval`` seconds until the handle is cancelled.

        Ticks are fixed-rate: a slow callback does not delay the next tick, so
        callbacks of the same task may overlap.
        """


def _run_safely(fn: Callable[[], None], name: str) -> None:
    try:
        fn()
    except Exception as e:
        log.exception(f"Scheduled task {name or fn!r} failed: {e}")


class ThreadScheduler(Scheduler):
    """Wall-clock scheduler built on threading.Timer (daemon threads)."""

    def now(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)

    def call_later(self, delay: float, fn: Callable[[], None], name: str = "") -> TaskHandle:
        handle = TaskHandle(name)

        def fire():
            if not handle.cancelled:
                _run_safely(fn, name)

        self._start_timer(delay, fire, name)
        return handle

    def call_every(self, interval: float, fn: Callable[[], None], name: str = "") -> TaskHandle:
        if interval <= 0:
            raise ValueError("interval must be positive")
        handle = TaskHandle(name)
        start = self.now()
        ticks = itertools.count(1)

        def fire():
            if handle.cancelled:
                return
            # Re-arm before running so a slow tick does not shift the schedule
            due = start + next(ticks) * interval
            self._start_timer(max(0.0, due - self.now()), fire, name)
            _run_safely(fn, name)

        self._start_timer(interval, fire, name)
        return handle

    @staticmethod
    def _start_timer(delay: float, fire: Callable[[], None], name: str) -> None:
        timer = threading.Timer(delay, fire)
        timer.daemon = True
        if name:
            timer.name = name
        timer.start()


class ManualScheduler(Scheduler):
    """
    Virtual-clock scheduler for tests and offline simulation.

    Nothing runs until ``advance()`` is called. ``sleep()`` only moves the
    clock, it never runs callbacks, which mirrors a caller blocked in I/O.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._seq = itertools.count()
        self._queue: List[Tuple[float, int, TaskHandle, Callable[[], None], Optional[float]]] = []
        self.slept: float = 0.0

    def now(self) -> float:
        return self._now

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            self._now += seconds
            self.slept += seconds

    def call_later(self, delay: float, fn: Callable[[], None], name: str = "") -> TaskHandle:
        handle = TaskHandle(name)
        heapq.heappush(self._queue, (self._now + max(0.0, delay), next(self._seq), handle, fn, None))
        return handle

    def call_every(self, interval: float, fn: Callable[[], None], name: str = "") -> TaskHandle:
        if interval <= 0:
            raise ValueError("interval must be positive")
        handle = TaskHandle(name)
        heapq.heappush(self._queue, (self._now + interval, next(self._seq), handle, fn, interval))
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for entry in self._queue if not entry[2].cancelled)

    def advance(self, seconds: float) -> None:
        """Move the clock forward, running every callback that falls due."""
        target = self._now + seconds
        while self._queue and self._queue[0][0] <= target:
            due, _, handle, fn, interval = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = max(self._now, due)
            if interval is not None:
                heapq.heappush(self._queue, (due + interval, next(self._seq), handle, fn, interval))
            _run_safely(fn, handle.name)
        self._now = max(self._now, target)
