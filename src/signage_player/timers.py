"""
Cancellable timers shared by the player's main loop and the tests.

Everything that mutates player state runs on one thread. In production that
is the GLib main loop (see mainloop.EventLoop); store transports that receive
on their own threads hand work over with post(). Tests swap in ManualClock to
drive time deterministically.
"""

import heapq
import itertools
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional, Tuple

from signage_common.logger import setup_logger

logger = setup_logger(__name__)


class TimerHandle:
    """Handle returned by call_later/call_every; cancel() stops it firing."""

    def __init__(
        self,
        when: float,
        callback: Callable[..., Any],
        args: Tuple[Any, ...] = (),
        interval: Optional[float] = None,
        on_cancel: Optional[Callable[['TimerHandle'], None]] = None
    ):
        self.when = when
        self.interval = interval
        self._callback = callback
        self._args = args
        self._on_cancel = on_cancel
        self._cancelled = False

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._on_cancel is not None:
            self._on_cancel(self)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def repeating(self) -> bool:
        return self.interval is not None

    def _run(self) -> None:
        try:
            self._callback(*self._args)
        except Exception:
            logger.exception("Timer callback %r failed", self._callback)

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "pending"
        return f"TimerHandle(when={self.when:.3f}, interval={self.interval}, {state})"


class TimerService(ABC):
    """Schedule-after / cancel abstraction shared by the real loop and tests."""

    @abstractmethod
    def now(self) -> datetime:
        """Current local wall-clock time."""

    @abstractmethod
    def monotonic(self) -> float:
        """Monotonic seconds used for timer deadlines."""

    @abstractmethod
    def post(self, callback: Callable[..., Any], *args: Any) -> None:
        """Run callback on the loop thread as soon as possible."""

    @abstractmethod
    def _schedule(
        self,
        delay: float,
        callback: Callable[..., Any],
        args: Tuple[Any, ...],
        interval: Optional[float]
    ) -> TimerHandle:
        """Arm a timer firing after delay seconds, then every interval if given."""

    @abstractmethod
    def pending_timers(self) -> List[TimerHandle]:
        """Timers that have neither fired (one-shot) nor been cancelled."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        """
        Run callback once after delay seconds.

        Returns:
            TimerHandle that can be cancelled
        """
        return self._schedule(max(0.0, float(delay)), callback, args, None)

    def call_every(self, interval: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        """
        Run callback every interval seconds, first run after one interval.

        Returns:
            TimerHandle; cancelling it stops all future runs
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        return self._schedule(float(interval), callback, args, float(interval))


class ManualClock(TimerService):
    """
    Simulated clock for tests.

    Time only moves when advance() is called; timers fire in deadline order
    with now() reporting each timer's own deadline while it runs.
    """

    def __init__(self, start: Optional[datetime] = None):
        self._start = start or datetime(2024, 1, 15, 12, 0, 0)  # a Monday
        self._elapsed = 0.0
        self._timers: List[Tuple[float, int, TimerHandle]] = []
        self._sequence = itertools.count()
        self._timers_lock = threading.Lock()

    def now(self) -> datetime:
        return self._start + timedelta(seconds=self._elapsed)

    def monotonic(self) -> float:
        return self._elapsed

    def post(self, callback: Callable[..., Any], *args: Any) -> None:
        callback(*args)

    def _schedule(self, delay, callback, args, interval) -> TimerHandle:
        handle = TimerHandle(self._elapsed + delay, callback, args, interval=interval)
        self._push(handle)
        return handle

    def _push(self, handle: TimerHandle) -> None:
        with self._timers_lock:
            heapq.heappush(self._timers, (handle.when, next(self._sequence), handle))

    def pending_timers(self) -> List[TimerHandle]:
        with self._timers_lock:
            return [h for _, _, h in self._timers if not h.cancelled]

    def _pop_due(self, deadline: float) -> Optional[TimerHandle]:
        """Pop the earliest live timer due at or before deadline."""
        with self._timers_lock:
            while self._timers:
                when, _, handle = self._timers[0]
                if handle.cancelled:
                    heapq.heappop(self._timers)
                    continue
                if when > deadline:
                    return None
                heapq.heappop(self._timers)
                return handle
        return None

    def advance(self, seconds: float) -> None:
        """Move time forward, firing every timer that falls due on the way."""
        target = self._elapsed + seconds
        while True:
            handle = self._pop_due(target)
            if handle is None:
                break
            self._elapsed = max(self._elapsed, handle.when)
            if handle.repeating:
                # Reschedule before running so the callback may cancel it
                handle.when += handle.interval
                self._push(handle)
            handle._run()
        self._elapsed = target

    def advance_to(self, moment: datetime) -> None:
        """Advance until now() == moment."""
        delta = (moment - self.now()).total_seconds()
        if delta < 0:
            raise ValueError("ManualClock cannot go backwards")
        self.advance(delta)
