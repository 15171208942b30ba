"""
Playback scheduling for the signage player.
Rotates through the current playlist, skipping items that are not eligible
right now, and reports an idle state when nothing may play.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional, Sequence, Tuple

from signage_common.logger import setup_logger

from .models import DEFAULT_DURATION, PlaylistItem, coerce_duration
from .timers import TimerHandle, TimerService
from .validity import is_item_eligible

logger = setup_logger(__name__)

Evaluator = Callable[[PlaylistItem, datetime], bool]


@dataclass(frozen=True)
class SchedulerState:
    """
    Immutable snapshot of the scheduler.

    While idle, current_index is only the position the next scan starts after;
    it does not name an item that is on screen.
    """

    playlist: Tuple[PlaylistItem, ...] = ()
    current_index: int = 0
    idle: bool = True

    @property
    def current_item(self) -> Optional[PlaylistItem]:
        if self.idle or not 0 <= self.current_index < len(self.playlist):
            return None
        return self.playlist[self.current_index]


def next_eligible_index(
    playlist: Sequence[PlaylistItem],
    start: int,
    now: datetime,
    evaluator: Evaluator = is_item_eligible
) -> Optional[int]:
    """
    Scan forward from start (inclusive), wrapping at most once.

    Args:
        playlist: Items in play order
        start: First index to try; out-of-range values restart at 0
        now: Instant to evaluate eligibility at
        evaluator: Eligibility predicate

    Returns:
        Index of the first eligible item, or None if no item is eligible
    """
    length = len(playlist)
    if length == 0:
        return None

    if not 0 <= start < length:
        start = 0

    for offset in range(length):
        index = (start + offset) % length
        if evaluator(playlist[index], now):
            return index

    return None


def select_first(
    playlist: Sequence[PlaylistItem],
    now: datetime,
    evaluator: Evaluator = is_item_eligible
) -> SchedulerState:
    """State for a freshly installed playlist: cursor back at index 0."""
    items = tuple(playlist)
    index = next_eligible_index(items, 0, now, evaluator)
    if index is None:
        return SchedulerState(playlist=items, current_index=0, idle=True)
    return SchedulerState(playlist=items, current_index=index, idle=False)


def select_next(
    state: SchedulerState,
    now: datetime,
    evaluator: Evaluator = is_item_eligible
) -> SchedulerState:
    """State after one advance tick."""
    items = state.playlist
    if not items:
        return SchedulerState(playlist=items, current_index=0, idle=True)

    if 0 <= state.current_index < len(items):
        start = (state.current_index + 1) % len(items)
    else:
        # Index no longer valid (playlist shrank); rescan from the top
        start = 0

    index = next_eligible_index(items, start, now, evaluator)
    if index is None:
        anchor = state.current_index if 0 <= state.current_index < len(items) else 0
        return SchedulerState(playlist=items, current_index=anchor, idle=True)
    return SchedulerState(playlist=items, current_index=index, idle=False)


class PlaybackScheduler:
    """
    Owns the playlist/cursor pair and the advance timer.

    The playlist is only ever replaced wholesale through replace_playlist();
    each replacement cancels the pending advance and restarts at index 0.
    An item that becomes ineligible while on screen keeps playing until its
    duration runs out; eligibility is only checked when advancing.
    """

    def __init__(
        self,
        timers: TimerService,
        evaluator: Evaluator = is_item_eligible,
        default_duration: int = DEFAULT_DURATION,
        on_change: Optional[Callable[[SchedulerState], None]] = None
    ):
        """
        Initialize the scheduler.

        Args:
            timers: Timer service (EventLoop in production, ManualClock in tests)
            evaluator: Eligibility predicate
            default_duration: Seconds per tick when an item has no valid duration
                              and between re-checks while idle
            on_change: Called with the new state whenever the selection changes
        """
        self._timers = timers
        self._evaluator = evaluator
        self.default_duration = coerce_duration(default_duration, DEFAULT_DURATION)
        self._on_change = on_change

        self._state = SchedulerState()
        self._timer: Optional[TimerHandle] = None
        self._running = False

        logger.info("PlaybackScheduler initialized (default duration %ds)", self.default_duration)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start the advance timer for whatever is currently selected."""
        if self._running:
            logger.warning("PlaybackScheduler already running")
            return

        self._running = True
        self._schedule_advance()
        logger.info("PlaybackScheduler started")

    def stop(self) -> None:
        """Cancel the advance timer. State is kept."""
        self._cancel_advance()
        if self._running:
            self._running = False
            logger.info("PlaybackScheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    # -------------------------------------------------------------------------
    # Updates
    # -------------------------------------------------------------------------

    def replace_playlist(self, items: Iterable[PlaylistItem]) -> SchedulerState:
        """
        Install a new playlist and restart rotation from index 0.

        Args:
            items: New playlist in play order

        Returns:
            The new state
        """
        # The old timer indexes into the old list; drop it first
        self._cancel_advance()

        new_state = select_first(tuple(items), self._timers.now(), self._evaluator)
        logger.info(
            "Playlist replaced: %d items, %s",
            len(new_state.playlist),
            "idle" if new_state.idle else f"starting at index {new_state.current_index}"
        )

        self._install(new_state, force_notify=True)
        self._schedule_advance()
        return new_state

    def clear(self) -> SchedulerState:
        """Drop the playlist entirely (device unassigned)."""
        return self.replace_playlist(())

    def advance(self) -> SchedulerState:
        """
        Move to the next eligible item, or go idle if there is none.

        Normally driven by the advance timer; calling it directly restarts
        the timer for the newly selected item.

        Returns:
            The new state
        """
        self._cancel_advance()

        new_state = select_next(self._state, self._timers.now(), self._evaluator)
        if new_state.idle:
            logger.debug("Advance: no eligible item, idle")
        else:
            logger.debug(
                "Advance: index %d (%s)",
                new_state.current_index,
                new_state.current_item.id if new_state.current_item else '?'
            )

        self._install(new_state)
        self._schedule_advance()
        return new_state

    def _on_advance_timer(self) -> None:
        self._timer = None
        self.advance()

    def _install(self, new_state: SchedulerState, force_notify: bool = False) -> None:
        old_state = self._state
        self._state = new_state

        changed = (
            force_notify
            or old_state.idle != new_state.idle
            or old_state.current_index != new_state.current_index
        )
        if changed and self._on_change:
            try:
                self._on_change(new_state)
            except Exception as e:
                logger.error("Error in scheduler change callback: %s", e)

    def _schedule_advance(self) -> None:
        if not self._running:
            return

        seconds = self.current_duration
        self._timer = self._timers.call_later(seconds, self._on_advance_timer)
        logger.debug("Next advance in %ds", seconds)

    def _cancel_advance(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def playlist(self) -> Tuple[PlaylistItem, ...]:
        return self._state.playlist

    @property
    def current_item(self) -> Optional[PlaylistItem]:
        """Item on screen, or None while idle."""
        return self._state.current_item

    @property
    def current_index(self) -> Optional[int]:
        """Index of the item on screen, or None while idle."""
        return None if self._state.idle else self._state.current_index

    @property
    def is_idle(self) -> bool:
        return self._state.idle

    @property
    def current_duration(self) -> int:
        """Seconds until the next advance for the current selection."""
        item = self._state.current_item
        if item is None:
            return self.default_duration
        return coerce_duration(item.duration, self.default_duration)

    @property
    def has_pending_advance(self) -> bool:
        return self._timer is not None and not self._timer.cancelled

    def get_playback_info(self) -> Dict[str, Any]:
        """
        Get information about current playback state.
        Useful for status reporting.
        """
        item = self.current_item
        return {
            'idle': self.is_idle,
            'items': len(self._state.playlist),
            'current_index': self.current_index,
            'current_item_id': item.id if item else None,
            'current_type': item.type if item else None,
            'duration': self.current_duration,
        }

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"PlaybackScheduler(items={len(self._state.playlist)}, "
            f"index={self.current_index}, idle={self.is_idle})"
        )
