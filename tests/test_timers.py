"""Unit tests for timers and the simulated clock."""

from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from signage_player.timers import ManualClock


class TestManualClock:
    """Tests for ManualClock."""

    def test_now_moves_with_advance(self, clock):
        """Test wall-clock time follows advance()."""
        start = clock.now()
        clock.advance(90)
        assert clock.now() - start == timedelta(seconds=90)

    def test_call_later_fires_once(self, clock):
        """Test a one-shot timer fires at its deadline only."""
        callback = MagicMock()
        clock.call_later(5, callback, 'arg')

        clock.advance(4)
        callback.assert_not_called()

        clock.advance(1)
        callback.assert_called_once_with('arg')

        clock.advance(60)
        assert callback.call_count == 1

    def test_cancel(self, clock):
        """Test a cancelled timer never fires."""
        callback = MagicMock()
        handle = clock.call_later(5, callback)
        handle.cancel()

        clock.advance(10)
        callback.assert_not_called()
        assert handle.cancelled
        assert clock.pending_timers() == []

    def test_call_every(self, clock):
        """Test a repeating timer fires once per interval."""
        callback = MagicMock()
        handle = clock.call_every(30, callback)

        clock.advance(95)
        assert callback.call_count == 3
        assert handle.repeating

        handle.cancel()
        clock.advance(60)
        assert callback.call_count == 3

    def test_call_every_rejects_zero_interval(self, clock):
        """Test a non-positive interval is refused."""
        with pytest.raises(ValueError):
            clock.call_every(0, MagicMock())

    def test_timers_fire_in_deadline_order(self, clock):
        """Test ordering and the time seen inside each callback."""
        fired = []
        clock.call_later(3, lambda: fired.append(('b', clock.now())))
        clock.call_later(1, lambda: fired.append(('a', clock.now())))

        clock.advance(5)

        assert [name for name, _ in fired] == ['a', 'b']
        assert fired[0][1] == datetime(2024, 1, 15, 12, 0, 1)
        assert fired[1][1] == datetime(2024, 1, 15, 12, 0, 3)

    def test_timer_scheduled_from_callback(self, clock):
        """Test a callback may schedule a timer that falls in the same advance."""
        fired = []

        def first():
            fired.append('first')
            clock.call_later(2, lambda: fired.append('second'))

        clock.call_later(1, first)
        clock.advance(5)
        assert fired == ['first', 'second']

    def test_failing_callback_is_contained(self, clock):
        """Test an exception in one timer does not stop the others."""
        callback = MagicMock()
        clock.call_later(1, MagicMock(side_effect=RuntimeError("boom")))
        clock.call_later(2, callback)

        clock.advance(3)
        callback.assert_called_once()

    def test_post_runs_immediately(self, clock):
        """Test post() runs synchronously on the simulated loop."""
        callback = MagicMock()
        clock.post(callback, 1, 2)
        callback.assert_called_once_with(1, 2)

    def test_advance_to(self, clock):
        """Test advancing to a wall-clock moment."""
        clock.advance_to(datetime(2024, 1, 15, 13, 30))
        assert clock.now() == datetime(2024, 1, 15, 13, 30)

        with pytest.raises(ValueError):
            clock.advance_to(datetime(2024, 1, 15, 9, 0))
