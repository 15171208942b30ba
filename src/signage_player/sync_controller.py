"""
Sync Controller for the signage player.

Bridges the document store to the pairing state machine and the playback
scheduler. Each incoming snapshot is turned into commands by a pure
function; the controller then applies them on the event loop.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from signage_common.logger import setup_logger

from .config import PlayerConfig
from .models import DEFAULT_DURATION, DeviceRecord, Location, PlaylistItem
from .pairing import PairingStateMachine
from .scheduler import PlaybackScheduler
from .store import DocumentStore, Snapshot, Subscription, device_key, location_key
from .timers import TimerService

logger = setup_logger(__name__)


@dataclass(frozen=True)
class AssignLocation:
    """The device document names a (new) location."""
    location_id: str


@dataclass(frozen=True)
class ClearAssignment:
    """The device document no longer names a location."""


@dataclass(frozen=True)
class ReplacePlaylist:
    """Install this playlist for the assigned location."""
    location_id: str
    items: Tuple[PlaylistItem, ...]
    name: str = ''


Command = Union[AssignLocation, ClearAssignment, ReplacePlaylist]


def device_snapshot_commands(
    snapshot: Snapshot,
    current_location: Optional[str]
) -> List[Command]:
    """
    Translate a device document snapshot into assignment commands.

    A missing document counts as unassigned.

    Args:
        snapshot: Snapshot of 'device_<id>'
        current_location: Location the controller currently follows

    Returns:
        Zero or one command
    """
    location_id: Optional[str] = None
    if snapshot.data is not None:
        record = DeviceRecord.from_document(snapshot.key, snapshot.data)
        location_id = record.location_id

    if location_id == current_location:
        return []
    if location_id:
        return [AssignLocation(location_id)]
    return [ClearAssignment()]


def playlist_snapshot_commands(
    snapshot: Snapshot,
    assigned_location: Optional[str],
    default_duration: int = DEFAULT_DURATION
) -> List[Command]:
    """
    Translate a location document snapshot into a playlist replacement.

    Snapshots for any location other than the assigned one are stale and
    produce nothing. A deleted location yields an empty playlist.

    Args:
        snapshot: Snapshot of 'location_<id>'
        assigned_location: Location the device is currently assigned to
        default_duration: Duration for items without one

    Returns:
        Zero or one command
    """
    if not assigned_location or snapshot.key != location_key(assigned_location):
        return []

    if snapshot.data is None:
        return [ReplacePlaylist(assigned_location, ())]

    location = Location.from_document(assigned_location, snapshot.data, default_duration)
    return [ReplacePlaylist(assigned_location, tuple(location.items), location.name)]


class SyncController:
    """
    Keeps one subscription on the device document and, while assigned, one
    on the location's playlist document.

    Store callbacks may arrive on any thread; they are posted to the timer
    service's loop so every state change happens on the loop thread, in the
    order the store delivered them.
    """

    def __init__(
        self,
        store: DocumentStore,
        pairing: PairingStateMachine,
        scheduler: PlaybackScheduler,
        timers: TimerService,
        config: Optional[PlayerConfig] = None,
        default_duration: int = DEFAULT_DURATION
    ):
        """
        Initialize the sync controller.

        Args:
            store: Document store
            pairing: Pairing state machine (must be identified before start())
            scheduler: Playback scheduler that receives playlists
            timers: Loop used to serialize store callbacks
            config: Device-local state; the assigned location is recorded there
            default_duration: Duration for items without one
        """
        self._store = store
        self._pairing = pairing
        self._scheduler = scheduler
        self._timers = timers
        self._config = config
        self.default_duration = default_duration

        self._device_subscription: Optional[Subscription] = None
        self._playlist_subscription: Optional[Subscription] = None
        self._playlist_location: Optional[str] = None
        self._running = False

        self._stats = {
            "device_snapshots": 0,
            "playlist_snapshots": 0,
            "stale_snapshots": 0,
            "errors": 0,
        }

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Subscribe to this device's registration document."""
        if self._running:
            logger.warning("SyncController already running")
            return

        device_id = self._pairing.device_id
        if not device_id:
            raise RuntimeError("SyncController started before device identification")

        self._running = True
        self._device_subscription = self._store.subscribe(
            device_key(device_id),
            self._post(self._handle_device_snapshot),
            self._post(self._handle_error)
        )
        logger.info("SyncController started for device %s", device_id)

    def stop(self) -> None:
        """Close every subscription this controller opened."""
        if not self._running:
            return

        self._running = False
        self._close_playlist_subscription()

        if self._device_subscription is not None:
            self._device_subscription.close()
            self._device_subscription = None

        logger.info("SyncController stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    def _post(self, handler):
        def dispatch(arg: Any) -> None:
            self._timers.post(handler, arg)
        return dispatch

    # -------------------------------------------------------------------------
    # Snapshot handling (loop thread)
    # -------------------------------------------------------------------------

    def _handle_device_snapshot(self, snapshot: Snapshot) -> None:
        if not self._running:
            return

        self._stats["device_snapshots"] += 1
        for command in device_snapshot_commands(snapshot, self._playlist_location):
            self.apply(command)

    def _handle_playlist_snapshot(self, snapshot: Snapshot) -> None:
        if not self._running:
            return

        self._stats["playlist_snapshots"] += 1
        commands = playlist_snapshot_commands(
            snapshot, self._playlist_location, self.default_duration
        )
        if not commands:
            self._stats["stale_snapshots"] += 1
            logger.debug("Ignoring stale snapshot of %s", snapshot.key)
        for command in commands:
            self.apply(command)

    def _handle_error(self, error: Exception) -> None:
        # Keep showing what we have; the store retries on its own
        self._stats["errors"] += 1
        logger.warning("Store subscription error, keeping last-known content: %s", error)

    def apply(self, command: Command) -> None:
        """Apply one command produced from a snapshot."""
        if isinstance(command, AssignLocation):
            self._assign(command.location_id)
        elif isinstance(command, ClearAssignment):
            self._unassign()
        elif isinstance(command, ReplacePlaylist):
            logger.info(
                "Playlist update for location %s (%s): %d items",
                command.location_id,
                command.name or 'unnamed',
                len(command.items)
            )
            self._scheduler.replace_playlist(command.items)
        else:
            raise TypeError(f"Unknown sync command: {command!r}")

    def _assign(self, location_id: str) -> None:
        # Old subscription goes first so its snapshots cannot land afterwards
        self._close_playlist_subscription()
        self._playlist_location = location_id
        self._remember_location(location_id)
        self._pairing.observe_assignment(location_id)

        self._playlist_subscription = self._store.subscribe(
            location_key(location_id),
            self._post(self._handle_playlist_snapshot),
            self._post(self._handle_error)
        )
        logger.info("Following playlist of location %s", location_id)

    def _unassign(self) -> None:
        logger.info("Device unassigned from location %s", self._playlist_location)
        self._close_playlist_subscription()
        self._playlist_location = None
        self._remember_location(None)
        self._pairing.observe_assignment(None)
        self._scheduler.clear()

    def _close_playlist_subscription(self) -> None:
        if self._playlist_subscription is not None:
            self._playlist_subscription.close()
            self._playlist_subscription = None

    def _remember_location(self, location_id: Optional[str]) -> None:
        if self._config is None:
            return
        self._config.location_id = location_id
        try:
            self._config.save_device()
        except OSError as e:
            logger.warning("Could not persist assigned location: %s", e)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def location_id(self) -> Optional[str]:
        """Location whose playlist is being followed."""
        return self._playlist_location

    @property
    def has_device_subscription(self) -> bool:
        return self._device_subscription is not None and not self._device_subscription.closed

    @property
    def has_playlist_subscription(self) -> bool:
        return self._playlist_subscription is not None and not self._playlist_subscription.closed

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)
