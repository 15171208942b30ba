"""
SignagePlayer - wires identity, pairing, heartbeat, sync and scheduling
together and reports what the screen should show.

Startup flow:
1. Load or create the device id (device.json)
2. Enter UNPAIRED with a fresh pairing code and start the heartbeat
3. Subscribe to the device document; when a locationId appears, follow
   that location's playlist
4. Rotate through the playlist until stopped
"""

import argparse
import signal
import sys
from typing import Any, Callable, Dict, Optional

from signage_common.config import Config, get_config
from signage_common.device_id import generate_pairing_code, get_hostname
from signage_common.logger import configure_logging, setup_logger

from .config import PlayerConfig
from .heartbeat import HeartbeatReporter
from .identity import DeviceIdentity, load_or_create_identity
from .models import DEFAULT_DURATION
from .pairing import PairingState, PairingStateMachine
from .renderer import ConsoleRenderer, DisplayMode, DisplayState
from .scheduler import PlaybackScheduler, SchedulerState
from .store import DocumentStore, HttpDocumentStore, MemoryDocumentStore
from .sync_controller import SyncController
from .timers import TimerHandle, TimerService

logger = setup_logger(__name__)


class SignagePlayer:
    """
    One player device's run.

    Everything except heartbeat store writes runs on the timer service's
    loop. stop() cancels every timer and closes every subscription the
    player opened.
    """

    def __init__(
        self,
        store: DocumentStore,
        timers: TimerService,
        player_config: PlayerConfig,
        default_duration: int = DEFAULT_DURATION,
        heartbeat_interval: float = HeartbeatReporter.DEFAULT_INTERVAL,
        clock_interval: float = 1,
        on_display_changed: Optional[Callable[[DisplayState], None]] = None,
        on_clock_tick: Optional[Callable[[Any], None]] = None,
        code_generator: Callable[[], str] = generate_pairing_code,
        background_heartbeat: bool = True
    ):
        """
        Initialize the player.

        Args:
            store: Document store (HTTP in production, memory in tests)
            timers: EventLoop or ManualClock
            player_config: Device-local state holding the device id
            default_duration: Seconds for items without a valid duration
            heartbeat_interval: Seconds between registration updates
            clock_interval: Seconds between clock overlay ticks
            on_display_changed: Called with each new DisplayState
            on_clock_tick: Called with the current time every clock_interval
            code_generator: Pairing code source
            background_heartbeat: Write heartbeats on their own thread
        """
        self._store = store
        self._timers = timers
        self._config = player_config
        self._on_display_changed = on_display_changed
        self._on_clock_tick = on_clock_tick
        self.clock_interval = clock_interval

        self._identity: Optional[DeviceIdentity] = None
        self._display: Optional[DisplayState] = None
        self._clock_timer: Optional[TimerHandle] = None
        self._running = False

        self.pairing = PairingStateMachine(
            on_state_changed=self._on_pairing_state_changed,
            code_generator=code_generator
        )
        self.scheduler = PlaybackScheduler(
            timers,
            default_duration=default_duration,
            on_change=self._on_schedule_changed
        )
        self.heartbeat = HeartbeatReporter(
            store, self.pairing, timers,
            interval=heartbeat_interval,
            background=background_heartbeat
        )
        self.sync = SyncController(
            store,
            self.pairing,
            self.scheduler,
            timers,
            config=player_config,
            default_duration=default_duration
        )

    def start(self) -> None:
        """Identify the device and start every component."""
        if self._running:
            logger.warning("Player already running")
            return

        self._identity = load_or_create_identity(self._config)
        self.pairing.identify(self._identity.device_id)

        self._running = True
        self.scheduler.start()
        self.heartbeat.start()
        self.sync.start()

        if self.clock_interval > 0:
            self._clock_timer = self._timers.call_every(self.clock_interval, self._tick_clock)

        logger.info(
            "Player started on %s as %s (%s)",
            get_hostname(),
            self._identity.device_id,
            self.pairing.state.value
        )
        self._refresh_display()

    def stop(self) -> None:
        """Cancel all timers and close all subscriptions."""
        if not self._running:
            return

        self._running = False
        self.sync.stop()
        self.heartbeat.stop()
        self.scheduler.stop()

        if self._clock_timer is not None:
            self._clock_timer.cancel()
            self._clock_timer = None

        logger.info("Player stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def device_id(self) -> Optional[str]:
        return self.pairing.device_id

    # -------------------------------------------------------------------------
    # Display
    # -------------------------------------------------------------------------

    @property
    def display_state(self) -> DisplayState:
        """What the screen should show right now."""
        device_id = self.pairing.device_id or ''

        if self.pairing.state != PairingState.PAIRED:
            return DisplayState(
                DisplayMode.PAIRING,
                device_id=device_id,
                pairing_code=self.pairing.pairing_code
            )

        item = self.scheduler.current_item
        if item is None:
            return DisplayState(DisplayMode.IDLE, device_id=device_id)
        return DisplayState(DisplayMode.PLAYING, device_id=device_id, item=item)

    def _refresh_display(self) -> None:
        state = self.display_state
        if state == self._display:
            return

        self._display = state
        logger.debug("Display: %s %s", state.mode.value, state.item_id or '')
        if self._on_display_changed:
            try:
                self._on_display_changed(state)
            except Exception as e:
                logger.error("Error in display callback: %s", e)

    def _on_schedule_changed(self, state: SchedulerState) -> None:
        self._refresh_display()

    def _on_pairing_state_changed(
        self,
        machine: PairingStateMachine,
        old_state: PairingState,
        new_state: PairingState
    ) -> None:
        if old_state == PairingState.PAIRED and new_state == PairingState.UNPAIRED:
            # Publish the new pairing code without waiting for the next beat
            self.heartbeat.queue_heartbeat()
        if self._running:
            self._refresh_display()

    def _tick_clock(self) -> None:
        if self._on_clock_tick:
            try:
                self._on_clock_tick(self._timers.now())
            except Exception as e:
                logger.error("Error in clock callback: %s", e)

    def get_status(self) -> Dict[str, Any]:
        """Status summary for logs and diagnostics."""
        return {
            "running": self._running,
            "display": self.display_state.mode.value,
            "pairing": self.pairing.get_state_info(),
            "playback": self.scheduler.get_playback_info(),
            "heartbeat": self.heartbeat.get_last_heartbeat_info(),
            "sync": self.sync.get_stats(),
        }


def build_store(config: Config, memory: bool = False) -> DocumentStore:
    """Create the document store described by config."""
    if memory:
        logger.info("Using in-memory document store")
        return MemoryDocumentStore()

    return HttpDocumentStore(
        base_url=config.store_url,
        notify_url=config.notify_url,
        poll_interval=config.poll_interval,
        request_timeout=config.request_timeout
    )


def main(argv: Optional[list] = None) -> int:
    """Main entry point for the signage player."""
    from .mainloop import EventLoop

    parser = argparse.ArgumentParser(description="Signage player")
    parser.add_argument('--config', help="YAML settings file")
    parser.add_argument('--config-dir', help="Device state directory (device.json)")
    parser.add_argument('--store-url', help="Document store API URL override")
    parser.add_argument('--notify-url', help="Change feed ZeroMQ endpoint override")
    parser.add_argument('--memory-store', action='store_true',
                        help="Run against an empty in-memory store (no backend)")
    parser.add_argument('--log-level', help="Logging level override")

    args = parser.parse_args(argv)

    config = get_config(args.config)
    if args.store_url:
        config.set('store.base_url', args.store_url)
    if args.notify_url:
        config.set('store.notify_url', args.notify_url)
    if args.config_dir:
        config.set('player.config_dir', args.config_dir)

    configure_logging(args.log_level or config.log_level)
    logger.info("Signage player starting...")

    loop = EventLoop()
    store = build_store(config, memory=args.memory_store)
    renderer = ConsoleRenderer()

    player = SignagePlayer(
        store,
        loop,
        PlayerConfig(config.config_dir),
        default_duration=config.default_duration,
        heartbeat_interval=config.heartbeat_interval,
        clock_interval=config.clock_interval,
        on_display_changed=lambda state: renderer.show(state, loop.now()),
        on_clock_tick=renderer.tick
    )

    def _signal_handler(signum, frame):
        logger.info("Received signal %d, shutting down...", signum)
        loop.stop()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        loop.post(player.start)
        loop.run_forever()
    finally:
        player.stop()
        store.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
