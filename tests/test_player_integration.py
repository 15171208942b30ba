"""Integration tests for the signage player.

Runs a whole player against the in-memory store on the simulated clock and
drives it the way the admin side would: pairing by code, editing the
playlist and unpairing.

Heartbeats are written inline so every step sees an up-to-date store,
except in the stalled-store tests which use the background writer.
"""

import threading
import time
from datetime import datetime

import pytest

from signage_player import admin
from signage_player.config import PlayerConfig
from signage_player.pairing import PairingState
from signage_player.player import SignagePlayer
from signage_player.renderer import DisplayMode, render
from signage_player.store import MemoryDocumentStore, StoreError, device_key, location_key



class StallingStore(MemoryDocumentStore):
    """Memory store whose heartbeat writes hang until released, then fail."""

    def __init__(self):
        super().__init__()
        self.release = threading.Event()
        self.heartbeat_attempts = 0

    def set(self, key, data, merge=True):
        if 'lastSeen' in data:
            self.heartbeat_attempts += 1
            self.release.wait(timeout=5)
            raise StoreError("store unreachable")
        super().set(key, data, merge=merge)

@pytest.fixture
def displays():
    """Every DisplayState the player reported, in order."""
    return []


@pytest.fixture
def player(store, clock, player_config, code_generator, displays):
    player = SignagePlayer(
        store,
        clock,
        player_config,
        on_display_changed=displays.append,
        code_generator=code_generator,
        background_heartbeat=False
    )
    player.start()
    yield player
    player.stop()


@pytest.fixture
def location(store):
    """Location with the a (active) / b (inactive) / c (active) playlist."""
    admin.create_location(store, 'store1', 'Main Street')
    admin.add_item(store, 'store1', {'id': 'a', 'type': 'image', 'url': 'https://cdn/a.png', 'duration': 5})
    admin.add_item(store, 'store1', {'id': 'b', 'type': 'image', 'url': 'https://cdn/b.png',
                                     'duration': 5, 'active': False})
    admin.add_item(store, 'store1', {'id': 'c', 'type': 'widget_ticker', 'text': 'Sale', 'duration': 5})
    return 'store1'


class TestPlayerLifecycle:
    """Tests for boot, pairing and shutdown."""

    def test_boot_shows_pairing_screen(self, player, store, displays):
        """Test an unassigned device shows its pairing code."""
        state = player.display_state

        assert state.mode == DisplayMode.PAIRING
        assert state.pairing_code == '100001'
        assert displays[-1] == state
        assert 'Enter code: 100001' in render(state, datetime(2024, 1, 15, 12, 0))

    def test_boot_registers_device(self, player, store):
        """Test the first heartbeat publishes the code immediately."""
        document = store.get(device_key(player.device_id))

        assert document['id'] == player.device_id
        assert document['pairingCode'] == '100001'
        assert 'locationId' not in document

    def test_pairing_starts_playback(self, player, store, location):
        """Test pairing by code switches to the location's playlist."""
        admin.pair_device(store, player.pairing.pairing_code, location)

        assert player.pairing.state == PairingState.PAIRED
        assert player.display_state.mode == DisplayMode.PLAYING
        assert player.display_state.item_id == 'a'

    def test_rotation_skips_inactive(self, player, store, clock, location):
        """Test the a -> c -> a rotation with b inactive."""
        admin.pair_device(store, '100001', location)

        clock.advance(5)
        assert player.display_state.item_id == 'c'

        clock.advance(5)
        assert player.display_state.item_id == 'a'

    def test_toggle_restarts_playlist(self, player, store, clock, location):
        """Test an edit made mid-rotation restarts at the first item."""
        admin.pair_device(store, '100001', location)
        clock.advance(5)
        assert player.display_state.item_id == 'c'

        admin.toggle_item_active(store, location, 'b')
        assert player.display_state.item_id == 'a'

        clock.advance(5)
        assert player.display_state.item_id == 'b'

    def test_all_inactive_goes_idle(self, player, store, location):
        """Test deactivating everything leaves the screen idle."""
        admin.pair_device(store, '100001', location)
        admin.toggle_item_active(store, location, 'a')
        admin.toggle_item_active(store, location, 'c')

        assert player.display_state.mode == DisplayMode.IDLE

    def test_unpair_returns_to_pairing(self, player, store, location):
        """Test unpairing shows a fresh code and publishes it right away."""
        admin.pair_device(store, '100001', location)
        admin.unpair_device(store, player.device_id)

        state = player.display_state
        assert state.mode == DisplayMode.PAIRING
        assert state.pairing_code == '100002'
        assert store.get(device_key(player.device_id))['pairingCode'] == '100002'
        assert player.scheduler.playlist == ()

    def test_old_code_cannot_pair_again(self, player, store, location):
        """Test the code shown before pairing is retired after unpairing."""
        admin.pair_device(store, '100001', location)
        admin.unpair_device(store, player.device_id)

        with pytest.raises(admin.PairingError):
            admin.pair_device(store, '100001', location)

    def test_heartbeat_keeps_assignment(self, player, store, clock, location):
        """Test periodic heartbeats never unpair the device."""
        admin.pair_device(store, '100001', location)
        clock.advance(120)

        assert store.get(device_key(player.device_id))['locationId'] == location
        assert player.pairing.state == PairingState.PAIRED

    def test_stop_releases_everything(self, player, store, clock, location):
        """Test stop leaves no timers or subscriptions."""
        admin.pair_device(store, '100001', location)
        player.stop()

        assert clock.pending_timers() == []
        assert store.active_subscriptions() == 0

    def test_clock_ticks(self, store, clock, player_config, code_generator):
        """Test the clock overlay callback fires every interval."""
        ticks = []
        player = SignagePlayer(store, clock, player_config, on_clock_tick=ticks.append,
                               code_generator=code_generator, background_heartbeat=False)
        player.start()
        clock.advance(3)
        player.stop()

        assert len(ticks) == 3

    def test_status(self, player, store, location):
        """Test the status summary."""
        admin.pair_device(store, '100001', location)
        status = player.get_status()

        assert status['running']
        assert status['display'] == 'playing'
        assert status['pairing']['location_id'] == location
        assert status['playback']['current_item_id'] == 'a'


class TestPlayerRestart:
    """Tests for identity and assignment across restarts."""

    def test_same_id_across_boots(self, store, clock, temp_config_dir):
        """Test two boots on the same storage register the same device."""
        first = SignagePlayer(store, clock, PlayerConfig(temp_config_dir), background_heartbeat=False)
        first.start()
        device_id = first.device_id
        first.stop()

        second = SignagePlayer(store, clock, PlayerConfig(temp_config_dir), background_heartbeat=False)
        second.start()
        assert second.device_id == device_id
        second.stop()

    def test_restart_resumes_assignment(self, store, clock, temp_config_dir, location):
        """Test a paired device plays again after a restart."""
        first = SignagePlayer(store, clock, PlayerConfig(temp_config_dir), background_heartbeat=False)
        first.start()
        admin.pair_device(store, first.pairing.pairing_code, location)
        first.stop()

        second = SignagePlayer(store, clock, PlayerConfig(temp_config_dir), background_heartbeat=False)
        second.start()

        assert second.display_state.mode == DisplayMode.PLAYING
        assert second.display_state.item_id == 'a'
        second.stop()

    def test_lost_storage_needs_new_pairing(self, store, clock, temp_config_dir, location):
        """Test clearing device storage yields a new, unpaired device."""
        config = PlayerConfig(temp_config_dir)
        first = SignagePlayer(store, clock, config, background_heartbeat=False)
        first.start()
        admin.pair_device(store, first.pairing.pairing_code, location)
        first.stop()
        config.clear()

        second = SignagePlayer(store, clock, PlayerConfig(temp_config_dir), background_heartbeat=False)
        second.start()

        assert second.device_id != first.device_id
        assert second.display_state.mode == DisplayMode.PAIRING
        second.stop()

    def test_unknown_content_type_plays_blank(self, store, clock, player_config):
        """Test an unrecognized item takes its slot with a blank frame."""
        admin.create_location(store, 'store1', 'Main Street')
        admin.add_item(store, 'store1', {'id': 'x', 'type': 'hologram', 'duration': 5})
        admin.add_item(store, 'store1', {'id': 'y', 'type': 'widget_ticker', 'duration': 5})

        player = SignagePlayer(store, clock, player_config, background_heartbeat=False)
        player.start()
        store.set(device_key(player.device_id), {'locationId': 'store1'})

        state = player.display_state
        assert state.item_id == 'x'
        assert render(state, clock.now()) == ''

        clock.advance(5)
        assert player.display_state.item_id == 'y'
        player.stop()
        assert store.get(location_key('store1'))['name'] == 'Main Street'


class TestStalledStore:
    """Tests for playback while the store hangs or fails on writes."""

    def test_stalled_heartbeat_keeps_rotation_on_time(self, clock, player_config):
        """Test a hanging heartbeat write leaves the advance timing unchanged."""
        store = StallingStore()
        admin.create_location(store, 'store1', 'Main Street')
        admin.add_item(store, 'store1', {'id': 'a', 'type': 'image', 'duration': 1})
        admin.add_item(store, 'store1', {'id': 'b', 'type': 'image', 'duration': 1})

        player = SignagePlayer(store, clock, player_config, heartbeat_interval=0.5)
        started = time.monotonic()
        player.start()
        store.set(device_key(player.device_id), {'locationId': 'store1'})

        shown = []
        for _ in range(4):
            shown.append(player.display_state.item_id)
            clock.advance(1)
        elapsed = time.monotonic() - started

        store.release.set()
        assert player.heartbeat.flush(timeout=2)
        player.stop()

        assert shown == ['a', 'b', 'a', 'b']
        assert elapsed < 2
        assert store.heartbeat_attempts >= 1
        assert player.get_status()['heartbeat']['last_success'] is False

    def test_unpair_with_stalled_store_returns_to_pairing(self, clock, player_config):
        """Test the unpair path does not wait for the store either."""
        store = StallingStore()
        admin.create_location(store, 'store1', 'Main Street')
        admin.add_item(store, 'store1', {'id': 'a', 'type': 'image', 'duration': 1})

        player = SignagePlayer(store, clock, player_config)
        player.start()
        store.set(device_key(player.device_id), {'locationId': 'store1'})

        started = time.monotonic()
        admin.unpair_device(store, player.device_id)
        elapsed = time.monotonic() - started

        store.release.set()
        assert player.heartbeat.flush(timeout=2)
        player.stop()

        assert player.display_state.mode == DisplayMode.PAIRING
        assert elapsed < 1
