"""
GLib main loop for the player.

Timers are GLib timeout sources and post() goes through GLib.idle_add, which
may be called from any thread, so store transports can hand their results to
the loop without locking.
"""

import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Tuple

from gi.repository import GLib

from signage_common.logger import setup_logger

from .timers import TimerHandle, TimerService

logger = setup_logger(__name__)


def _to_ms(seconds: float) -> int:
    return max(0, int(round(seconds * 1000)))


class EventLoop(TimerService):
    """
    Single-threaded run loop for the player.

    run_forever() blocks the calling thread in GLib.MainLoop.run() until
    stop() is called (from any thread or a signal handler).
    """

    def __init__(self):
        self._loop = GLib.MainLoop()
        self._sources: Dict[TimerHandle, int] = {}
        self._sources_lock = threading.Lock()

    def now(self) -> datetime:
        return datetime.now()

    def monotonic(self) -> float:
        return GLib.get_monotonic_time() / 1_000_000

    def post(self, callback: Callable[..., Any], *args: Any) -> None:
        GLib.idle_add(self._run_posted, callback, args)

    def _run_posted(self, callback: Callable[..., Any], args: Tuple[Any, ...]) -> bool:
        try:
            callback(*args)
        except Exception:
            logger.exception("Posted callback %r failed", callback)
        return False  # Don't repeat

    def _schedule(self, delay, callback, args, interval) -> TimerHandle:
        handle = TimerHandle(
            self.monotonic() + delay, callback, args,
            interval=interval, on_cancel=self._remove_source
        )
        with self._sources_lock:
            self._sources[handle] = GLib.timeout_add(_to_ms(delay), self._on_timeout, handle)
        return handle

    def _on_timeout(self, handle: TimerHandle) -> bool:
        """GLib timeout callback; the return value decides whether it repeats."""
        if handle.cancelled:
            return False

        if not handle.repeating:
            with self._sources_lock:
                self._sources.pop(handle, None)
            handle._run()
            return False

        handle.when += handle.interval
        handle._run()
        return not handle.cancelled

    def _remove_source(self, handle: TimerHandle) -> None:
        with self._sources_lock:
            source_id = self._sources.pop(handle, None)
        if source_id is not None:
            GLib.source_remove(source_id)

    def pending_timers(self) -> List[TimerHandle]:
        with self._sources_lock:
            return [h for h in self._sources if not h.cancelled]

    @property
    def is_running(self) -> bool:
        return self._loop.is_running()

    def run_forever(self) -> None:
        """Run until stop() is called."""
        logger.debug("Event loop started")
        try:
            self._loop.run()
        finally:
            logger.debug("Event loop stopped")

    def stop(self) -> None:
        """Ask the loop to exit; safe to call from any thread or a signal handler."""
        GLib.idle_add(self._quit)

    def _quit(self) -> bool:
        self._loop.quit()
        return False
