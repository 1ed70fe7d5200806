"""Timer schedulers that run every callback on a single logical thread.

The tracker relies on timer callbacks never running concurrently with each
other. ``ThreadScheduler`` provides that with one worker thread;
``ManualScheduler`` runs callbacks inline while a virtual clock is advanced,
which makes time-dependent behaviour deterministic.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Protocol

logger = logging.getLogger(__name__)

_COMPACT_THRESHOLD = 256


class TimerHandle:
    __slots__ = ("callback", "interval", "cancelled", "_owner")

    def __init__(
        self,
        callback: Callable[[], Any],
        interval: Optional[timedelta],
        owner: "Scheduler",
    ) -> None:
        self.callback = callback
        self.interval = interval
        self.cancelled = False
        self._owner = owner

    def cancel(self) -> None:
        if not self.cancelled:
            self.cancelled = True
            self._owner.cancel(self)


class Scheduler(Protocol):
    def start(self) -> None: ...

    def stop(self) -> None: ...

    def call_later(self, delay: timedelta, callback: Callable[[], Any]) -> TimerHandle: ...

    def call_every(
        self, interval: timedelta, callback: Callable[[], Any]
    ) -> TimerHandle: ...

    def cancel(self, handle: TimerHandle) -> None: ...


class ThreadScheduler:
    """Runs timers on one daemon thread using the monotonic clock."""

    def __init__(self, name: str = "worktime-scheduler") -> None:
        self.name = name
        self._heap: list[tuple[float, int, TimerHandle]] = []
        self._counter = itertools.count()
        self._cancelled = 0
        self._cond = threading.Condition()
        self._thread: Optional[threading.Thread] = None
        self._stopping = False

    def start(self) -> None:
        with self._cond:
            if self._thread and self._thread.is_alive():
                return
            self._stopping = False
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()
        logger.debug("Scheduler thread %s started.", self.name)

    def stop(self) -> None:
        with self._cond:
            self._stopping = True
            self._heap.clear()
            self._cancelled = 0
            thread = self._thread
            self._thread = None
            self._cond.notify_all()
        if thread and thread is not threading.current_thread():
            thread.join(timeout=10)
            logger.debug("Scheduler thread %s stopped.", self.name)

    def call_later(self, delay: timedelta, callback: Callable[[], Any]) -> TimerHandle:
        return self._push(delay, callback, None)

    def call_every(self, interval: timedelta, callback: Callable[[], Any]) -> TimerHandle:
        return self._push(interval, callback, interval)

    def cancel(self, handle: TimerHandle) -> None:
        handle.cancelled = True
        with self._cond:
            self._cancelled += 1
            if self._cancelled > _COMPACT_THRESHOLD and self._cancelled * 2 > len(self._heap):
                self._heap = [item for item in self._heap if not item[2].cancelled]
                heapq.heapify(self._heap)
                self._cancelled = 0
            self._cond.notify_all()

    def _push(
        self,
        delay: timedelta,
        callback: Callable[[], Any],
        interval: Optional[timedelta],
    ) -> TimerHandle:
        handle = TimerHandle(callback, interval, self)
        due = time.monotonic() + max(delay.total_seconds(), 0.0)
        with self._cond:
            heapq.heappush(self._heap, (due, next(self._counter), handle))
            self._cond.notify_all()
        return handle

    def _run(self) -> None:
        while True:
            with self._cond:
                handle = self._next_due_locked()
                if handle is None:
                    return
            try:
                handle.callback()
            except Exception:  # pragma: no cover
                logger.exception("Timer callback %r failed.", handle.callback)

    def _next_due_locked(self) -> Optional[TimerHandle]:
        while not self._stopping:
            if not self._heap:
                self._cond.wait()
                continue
            due, _, handle = self._heap[0]
            if handle.cancelled:
                heapq.heappop(self._heap)
                self._cancelled = max(self._cancelled - 1, 0)
                continue
            remaining = due - time.monotonic()
            if remaining > 0:
                self._cond.wait(remaining)
                continue
            heapq.heappop(self._heap)
            if handle.interval is not None:
                next_due = time.monotonic() + handle.interval.total_seconds()
                heapq.heappush(self._heap, (next_due, next(self._counter), handle))
            return handle
        return None


class ManualScheduler:
    """Deterministic scheduler driven by an explicit virtual wall clock.

    ``now`` is usable as the tracker's clock. ``advance`` moves time forward
    and runs every timer that falls due on the way, in order, with the clock
    set to each timer's due time. ``jump`` moves the clock without running
    anything, which is what a suspended machine looks like from the inside.
    """

    def __init__(self, start: datetime) -> None:
        self._now = start
        self._heap: list[tuple[datetime, int, TimerHandle]] = []
        self._counter = itertools.count()
        self.running = False

    def now(self) -> datetime:
        return self._now

    def start(self) -> None:
        self.running = True

    def stop(self) -> None:
        self.running = False
        self._heap.clear()

    def call_later(self, delay: timedelta, callback: Callable[[], Any]) -> TimerHandle:
        return self._push(delay, callback, None)

    def call_every(self, interval: timedelta, callback: Callable[[], Any]) -> TimerHandle:
        return self._push(interval, callback, interval)

    def cancel(self, handle: TimerHandle) -> None:
        handle.cancelled = True

    def pending(self) -> int:
        return sum(1 for _, _, handle in self._heap if not handle.cancelled)

    def jump(self, delta: timedelta) -> None:
        self._now += delta

    def run_due(self) -> None:
        self.advance(timedelta(0))

    def advance(self, delta: timedelta) -> None:
        target = self._now + delta
        while self._heap and self._heap[0][0] <= target:
            due, _, handle = heapq.heappop(self._heap)
            if handle.cancelled:
                continue
            self._now = max(self._now, due)
            if handle.interval is not None:
                heapq.heappush(
                    self._heap, (self._now + handle.interval, next(self._counter), handle)
                )
            handle.callback()
        self._now = max(self._now, target)

    def _push(
        self,
        delay: timedelta,
        callback: Callable[[], Any],
        interval: Optional[timedelta],
    ) -> TimerHandle:
        handle = TimerHandle(callback, interval, self)
        heapq.heappush(
            self._heap,
            (self._now + max(delay, timedelta(0)), next(self._counter), handle),
        )
        return handle
