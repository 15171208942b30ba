"""Tests for the GLib-backed EventLoop.

These run a real GLib main loop, so they are skipped where PyGObject is not
installed.
"""

import threading
import time
from unittest.mock import MagicMock

import pytest

pytest.importorskip("gi.repository.GLib")

from signage_player import admin  # noqa: E402
from signage_player.mainloop import EventLoop  # noqa: E402
from signage_player.player import SignagePlayer  # noqa: E402
from signage_player.store import MemoryDocumentStore, StoreError, device_key  # noqa: E402


class SlowFailingStore(MemoryDocumentStore):
    """Memory store whose heartbeat writes take two seconds and then fail."""

    def set(self, key, data, merge=True):
        if 'lastSeen' in data:
            time.sleep(2)
            raise StoreError("timed out")
        super().set(key, data, merge=merge)


class TestEventLoop:
    """Tests for the real EventLoop."""

    def test_runs_timers_and_stops(self):
        """Test a timer fires and stop() ends run_forever."""
        loop = EventLoop()
        fired = []
        loop.call_later(0.01, lambda: fired.append('timer'))
        loop.call_later(0.05, loop.stop)

        loop.run_forever()

        assert fired == ['timer']
        assert not loop.is_running

    def test_cancelled_timer_never_fires(self):
        """Test cancel() removes the GLib source."""
        loop = EventLoop()
        fired = []
        handle = loop.call_later(0.01, lambda: fired.append('timer'))
        handle.cancel()
        loop.call_later(0.05, loop.stop)

        loop.run_forever()

        assert fired == []
        assert handle not in loop.pending_timers()

    def test_call_every_until_cancelled(self):
        """Test a repeating timer can cancel itself from its callback."""
        loop = EventLoop()
        ticks = []

        def tick():
            ticks.append(loop.monotonic())
            if len(ticks) == 3:
                handle.cancel()

        handle = loop.call_every(0.01, tick)
        loop.call_later(0.2, loop.stop)

        loop.run_forever()

        assert len(ticks) == 3
        assert loop.pending_timers() == []

    def test_post_from_other_thread(self):
        """Test work posted from another thread runs on the loop thread."""
        loop = EventLoop()
        seen = []

        def record():
            seen.append(threading.get_ident())
            loop.stop()

        worker = threading.Thread(target=lambda: loop.post(record))
        loop.call_later(0.01, worker.start)
        # Safety net so a broken loop cannot hang the test run
        loop.call_later(5, loop.stop)

        loop.run_forever()
        worker.join(timeout=1)

        assert seen == [threading.get_ident()]

    def test_posted_callback_error_is_contained(self):
        """Test a failing posted callback does not stop the loop."""
        loop = EventLoop()
        callback = MagicMock()
        loop.post(MagicMock(side_effect=RuntimeError("boom")))
        loop.post(callback)
        loop.post(loop.stop)

        loop.run_forever()
        callback.assert_called_once()


class TestPlayerOnEventLoop:
    """Tests for a whole player on the real loop."""

    def test_slow_store_does_not_delay_rotation(self, player_config):
        """Test advances stay one second apart while heartbeat writes hang."""
        loop = EventLoop()
        store = SlowFailingStore()
        admin.create_location(store, 'store1', 'Main Street')
        admin.add_item(store, 'store1', {'id': 'a', 'type': 'image', 'duration': 1})
        admin.add_item(store, 'store1', {'id': 'b', 'type': 'image', 'duration': 1})

        changes = []
        player = SignagePlayer(
            store,
            loop,
            player_config,
            heartbeat_interval=0.5,
            clock_interval=0,
            on_display_changed=lambda state: changes.append((loop.monotonic(), state.item_id))
        )

        def assign():
            store.set(device_key(player.device_id), {'locationId': 'store1'})

        loop.post(player.start)
        loop.post(assign)
        loop.call_later(3.5, loop.stop)
        try:
            loop.run_forever()
        finally:
            player.stop()

        advances = [when for when, item_id in changes if item_id is not None]
        gaps = [later - earlier for earlier, later in zip(advances, advances[1:])]

        assert len(advances) >= 3
        assert max(gaps) < 1.5
