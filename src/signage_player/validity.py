"""
Item validity evaluation.

Decides whether a playlist item may play at a given wall-clock instant.
Pure functions only: called on every advance tick, holds no state.
"""

from datetime import datetime
from typing import Any, Optional

from .models import WEEKDAY_KEYS, PlaylistItem

MINUTES_PER_DAY = 24 * 60


def parse_clock_time(value: Any) -> Optional[int]:
    """
    Parse 'HH:MM' (or 'HH:MM:SS') into minutes since midnight.

    '24:00' is accepted as the end of the day.

    Args:
        value: Time string from a schedule field

    Returns:
        Minutes since midnight, or None if the value is missing or malformed
    """
    if not isinstance(value, str):
        return None

    parts = value.strip().split(':')
    if len(parts) not in (2, 3):
        return None

    try:
        hours = int(parts[0])
        minutes = int(parts[1])
    except ValueError:
        return None

    if not 0 <= minutes < 60:
        return None
    if hours == 24 and minutes == 0:
        return MINUTES_PER_DAY
    if not 0 <= hours < 24:
        return None

    return hours * 60 + minutes


def weekday_key(now: datetime) -> str:
    """Schedule key ('mon'..'sun') for the local weekday of now."""
    return WEEKDAY_KEYS[now.weekday()]


def minutes_since_midnight(now: datetime) -> int:
    return now.hour * 60 + now.minute


def is_day_allowed(schedule_days: Any, now: datetime) -> bool:
    """
    Check the weekday mask.

    A missing mask allows every day. A mask that is not a mapping is treated
    as missing. Within a mapping, a day only plays if it is marked true.
    """
    if schedule_days is None or not isinstance(schedule_days, dict):
        return True
    return bool(schedule_days.get(weekday_key(now), False))


def is_within_window(start: Any, end: Any, now: datetime) -> bool:
    """
    Check the same-day time window [start, end], inclusive at both ends.

    A missing or malformed bound leaves that side open. A window whose start
    is after its end would wrap midnight, which is not supported; it is
    ignored rather than blocking the item.
    """
    start_minutes = parse_clock_time(start)
    end_minutes = parse_clock_time(end)

    if start_minutes is None and end_minutes is None:
        return True

    if start_minutes is not None and end_minutes is not None and start_minutes > end_minutes:
        return True

    current = minutes_since_midnight(now)

    if start_minutes is not None and current < start_minutes:
        return False
    if end_minutes is not None and current > end_minutes:
        return False

    return True


def is_item_eligible(item: PlaylistItem, now: datetime) -> bool:
    """
    Decide whether item may play at now (local wall-clock time).

    Rules, first failure wins:
    1. inactive items never play
    2. the weekday must be enabled in scheduleDays, when present
    3. the time of day must fall inside [scheduleStart, scheduleEnd]

    Args:
        item: Playlist item to evaluate
        now: Current local time

    Returns:
        True if the item is eligible
    """
    if item.active is False:
        return False

    if not is_day_allowed(item.schedule_days, now):
        return False

    return is_within_window(item.schedule_start, item.schedule_end, now)
