"""Unit tests for item validity evaluation.

Covers the active flag, weekday masks, the inclusive time window and the
lenient handling of malformed or inverted schedule fields.
"""

from datetime import datetime, timedelta

import pytest

from signage_player.models import PlaylistItem
from signage_player.validity import (
    is_day_allowed,
    is_item_eligible,
    is_within_window,
    parse_clock_time,
    weekday_key,
)


MONDAY = datetime(2024, 1, 15)
SUNDAY = datetime(2024, 1, 21)


def at(hour, minute=0, second=0, day=MONDAY):
    return day.replace(hour=hour, minute=minute, second=second)


def make_item(**fields):
    data = {'id': 'item-1', 'type': 'image'}
    data.update(fields)
    return PlaylistItem.from_dict(data)


class TestParseClockTime:
    """Tests for parse_clock_time."""

    @pytest.mark.parametrize("value,expected", [
        ('00:00', 0),
        ('09:30', 570),
        ('23:59', 1439),
        ('07:15:30', 435),
        ('24:00', 1440),
        (' 12:00 ', 720),
    ])
    def test_valid_times(self, value, expected):
        """Test valid HH:MM and HH:MM:SS values."""
        assert parse_clock_time(value) == expected

    @pytest.mark.parametrize("value", [
        None, '', 'abc', '12', '12:60', '25:00', '24:01', '-1:00', 'noon:00', 930,
    ])
    def test_malformed_times(self, value):
        """Test malformed values yield None."""
        assert parse_clock_time(value) is None


class TestWeekday:
    """Tests for weekday helpers."""

    def test_weekday_key(self):
        """Test weekday keys are lowercase three-letter names."""
        assert weekday_key(MONDAY) == 'mon'
        assert weekday_key(SUNDAY) == 'sun'
        assert weekday_key(MONDAY + timedelta(days=2)) == 'wed'

    def test_missing_mask_allows_every_day(self):
        """Test no mask means no day constraint."""
        for offset in range(7):
            assert is_day_allowed(None, MONDAY + timedelta(days=offset))

    def test_missing_day_key_is_false(self):
        """Test a day absent from the mask does not play."""
        assert not is_day_allowed({'tue': True}, MONDAY)

    def test_non_mapping_mask_is_ignored(self):
        """Test a mask of the wrong shape is treated as absent."""
        assert is_day_allowed('weekdays', MONDAY)
        assert is_day_allowed(['mon'], SUNDAY)


class TestTimeWindow:
    """Tests for is_within_window."""

    def test_inclusive_bounds(self):
        """Test both bounds are inclusive at minute resolution."""
        assert not is_within_window('09:00', '17:00', at(8, 59))
        assert is_within_window('09:00', '17:00', at(9, 0))
        assert is_within_window('09:00', '17:00', at(17, 0))
        assert is_within_window('09:00', '17:00', at(17, 0, 59))
        assert not is_within_window('09:00', '17:00', at(17, 1))

    def test_start_only(self):
        """Test a missing end leaves the window open until midnight."""
        assert not is_within_window('18:00', None, at(17, 59))
        assert is_within_window('18:00', None, at(18, 0))
        assert is_within_window('18:00', None, at(23, 59))

    def test_end_only(self):
        """Test a missing start leaves the window open from midnight."""
        assert is_within_window(None, '08:00', at(0, 0))
        assert is_within_window(None, '08:00', at(8, 0))
        assert not is_within_window(None, '08:00', at(8, 1))

    def test_malformed_bound_is_open(self):
        """Test a malformed bound only drops that side."""
        assert is_within_window('abc', '10:00', at(9, 0))
        assert not is_within_window('abc', '10:00', at(11, 0))

    def test_inverted_window_is_ignored(self):
        """Test a window that would wrap midnight does not block."""
        for hour in (0, 5, 12, 21, 23):
            assert is_within_window('22:00', '06:00', at(hour))

    def test_end_of_day(self):
        """Test '24:00' includes the last minute of the day."""
        assert is_within_window('20:00', '24:00', at(23, 59, 59))


class TestIsItemEligible:
    """Tests for is_item_eligible."""

    def test_unscheduled_item_always_eligible(self):
        """Test an active item with no schedule plays at any instant."""
        item = make_item()
        for offset in range(7):
            for hour in range(0, 24, 3):
                assert is_item_eligible(item, at(hour, day=MONDAY + timedelta(days=offset)))

    def test_inactive_item_never_eligible(self):
        """Test inactive items never play, whatever their schedule."""
        item = make_item(active=False, scheduleStart='00:00', scheduleEnd='24:00')
        for hour in range(24):
            assert not is_item_eligible(item, at(hour))

    def test_empty_schedule_strings_mean_no_window(self):
        """Test the editor's '' defaults do not constrain."""
        item = make_item(scheduleStart='', scheduleEnd='')
        assert item.schedule_start is None
        assert is_item_eligible(item, at(3))

    def test_day_mask(self):
        """Test the weekday mask with every other day disabled."""
        days = {'mon': False, 'tue': True, 'wed': True, 'thu': True,
                'fri': True, 'sat': True, 'sun': True}
        item = make_item(scheduleDays=days)

        assert not is_item_eligible(item, at(12))
        assert is_item_eligible(item, at(12, day=MONDAY + timedelta(days=1)))

    def test_day_mask_checked_before_window(self):
        """Test a disabled day wins over a matching window."""
        item = make_item(scheduleDays={'mon': False}, scheduleStart='09:00', scheduleEnd='17:00')
        assert not is_item_eligible(item, at(12))

    def test_day_and_window_combined(self):
        """Test an item needs both its day and its window."""
        item = make_item(scheduleDays={'mon': True}, scheduleStart='09:00', scheduleEnd='17:00')

        assert is_item_eligible(item, at(9))
        assert not is_item_eligible(item, at(18))
        assert not is_item_eligible(item, at(12, day=SUNDAY))
