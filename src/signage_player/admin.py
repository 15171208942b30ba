"""
Admin-side helpers for the signage system.

The player never writes locationId; these functions are how the admin side
pairs devices, checks which ones are online, and edits the playlists whose
snapshots the players react to.
"""

import argparse
import sys
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from signage_common.config import get_config
from signage_common.device_id import is_valid_pairing_code
from signage_common.ipc import MessagePublisher
from signage_common.logger import configure_logging, setup_logger

from .models import WEEKDAY_KEYS, DeviceRecord
from .store import (
    DEVICE_PREFIX,
    DocumentStore,
    HttpDocumentStore,
    StoreError,
    device_key,
    location_key,
)

logger = setup_logger(__name__)

ONLINE_WINDOW_SECONDS = 60

Notifier = Optional[Callable[[str], None]]


class PairingError(Exception):
    """Raised when a pairing code does not identify a device."""
    pass


class LocationNotFoundError(Exception):
    """Raised when editing a location document that does not exist."""
    pass


def _announce(notify: Notifier, key: str) -> None:
    if notify is None:
        return
    try:
        notify(key)
    except Exception as e:
        logger.warning("Could not announce change to %s: %s", key, e)


# -----------------------------------------------------------------------------
# Pairing
# -----------------------------------------------------------------------------

def find_devices_by_code(store: DocumentStore, pairing_code: str) -> List[DeviceRecord]:
    """All device registrations currently showing pairing_code."""
    return [
        DeviceRecord.from_document(key[len(DEVICE_PREFIX):], data)
        for key, data in store.find('pairingCode', pairing_code)
        if key.startswith(DEVICE_PREFIX)
    ]


def pair_device(
    store: DocumentStore,
    pairing_code: str,
    location_id: str,
    notify: Notifier = None
) -> DeviceRecord:
    """
    Assign the device showing pairing_code to location_id.

    When more than one device shows the same code, the most recently seen
    one is paired.

    Args:
        store: Document store
        pairing_code: Code read off the screen
        location_id: Location to assign
        notify: Optional change announcer (e.g. MessagePublisher.document_changed)

    Returns:
        The paired device's record

    Raises:
        PairingError: If the code is malformed or matches no device
    """
    pairing_code = (pairing_code or '').strip()
    if not is_valid_pairing_code(pairing_code):
        raise PairingError(f"Invalid pairing code: {pairing_code!r}")
    if not location_id:
        raise PairingError("A location is required to pair a device")

    matches = find_devices_by_code(store, pairing_code)
    if not matches:
        raise PairingError(f"No device is showing code {pairing_code}")

    if len(matches) > 1:
        logger.warning("%d devices show code %s, pairing the most recent", len(matches), pairing_code)
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    record = max(matches, key=lambda r: r.last_seen_at or epoch)

    key = device_key(record.id)
    store.set(key, {'locationId': location_id}, merge=True)
    _announce(notify, key)

    logger.info("Paired device %s to location %s", record.id, location_id)
    record.location_id = location_id
    return record


def unpair_device(store: DocumentStore, device_id: str, notify: Notifier = None) -> None:
    """Clear the device's locationId; the player falls back to its pairing screen."""
    key = device_key(device_id)
    store.set(key, {'locationId': None}, merge=True)
    _announce(notify, key)
    logger.info("Unpaired device %s", device_id)


# -----------------------------------------------------------------------------
# Online status
# -----------------------------------------------------------------------------

def is_device_online(
    record: DeviceRecord,
    now: Optional[datetime] = None,
    window: float = ONLINE_WINDOW_SECONDS
) -> bool:
    """
    A device is online if its lastSeen is less than window seconds old.

    With a 30 second heartbeat this tolerates one missed beat.
    """
    last_seen = record.last_seen_at
    if last_seen is None:
        return False

    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.astimezone()

    return (now - last_seen).total_seconds() < window


def count_online(
    records: Iterable[DeviceRecord],
    now: Optional[datetime] = None,
    window: float = ONLINE_WINDOW_SECONDS
) -> int:
    return sum(1 for record in records if is_device_online(record, now, window))


def devices_for_location(store: DocumentStore, location_id: str) -> List[DeviceRecord]:
    """Every device currently assigned to location_id."""
    return [
        DeviceRecord.from_document(key[len(DEVICE_PREFIX):], data)
        for key, data in store.find('locationId', location_id)
        if key.startswith(DEVICE_PREFIX)
    ]


def describe_schedule_days(days: Optional[Mapping[str, Any]]) -> str:
    """
    Human summary of a weekday mask.

    Returns:
        'Everyday', 'Never', or a list such as 'Mon, Wed, Fri'
    """
    if not days:
        return 'Everyday'

    enabled = [day for day in WEEKDAY_KEYS if days.get(day)]
    if len(enabled) == len(WEEKDAY_KEYS):
        return 'Everyday'
    if not enabled:
        return 'Never'
    return ', '.join(day.capitalize() for day in enabled)


# -----------------------------------------------------------------------------
# Playlist editing
# -----------------------------------------------------------------------------

def create_location(
    store: DocumentStore,
    location_id: str,
    name: str,
    notify: Notifier = None
) -> None:
    """Create (or rename) a location, keeping any existing content."""
    key = location_key(location_id)
    current = store.get(key) or {}
    store.set(key, {'name': name, 'content': current.get('content', [])}, merge=True)
    _announce(notify, key)


def _load_content(store: DocumentStore, location_id: str) -> List[Dict[str, Any]]:
    data = store.get(location_key(location_id))
    if data is None:
        raise LocationNotFoundError(f"Location {location_id} does not exist")
    content = data.get('content')
    return list(content) if isinstance(content, list) else []


def _save_content(
    store: DocumentStore,
    location_id: str,
    content: List[Dict[str, Any]],
    notify: Notifier
) -> None:
    key = location_key(location_id)
    store.set(key, {'content': content}, merge=True)
    _announce(notify, key)


def add_item(
    store: DocumentStore,
    location_id: str,
    item: Dict[str, Any],
    notify: Notifier = None
) -> Dict[str, Any]:
    """
    Append an item to a location's playlist.

    Items without an id get a millisecond timestamp id; items without
    'active' or 'duration' get the editor defaults.

    Returns:
        The stored item
    """
    content = _load_content(store, location_id)

    new_item = dict(item)
    new_item.setdefault('active', True)
    new_item.setdefault('duration', 10)
    if not new_item.get('id'):
        new_item['id'] = str(int(time.time() * 1000))

    if any(existing.get('id') == new_item['id'] for existing in content):
        raise ValueError(f"Item id {new_item['id']} already exists in {location_id}")

    content.append(new_item)
    _save_content(store, location_id, content, notify)
    return new_item


def toggle_item_active(
    store: DocumentStore,
    location_id: str,
    item_id: str,
    notify: Notifier = None
) -> bool:
    """
    Flip an item's active flag.

    Returns:
        The new active value

    Raises:
        KeyError: If the item is not in the playlist
    """
    content = _load_content(store, location_id)
    for entry in content:
        if entry.get('id') == item_id:
            entry['active'] = not entry.get('active', True)
            _save_content(store, location_id, content, notify)
            return entry['active']
    raise KeyError(item_id)


def remove_item(
    store: DocumentStore,
    location_id: str,
    item_id: str,
    notify: Notifier = None
) -> bool:
    """
    Remove an item from a playlist.

    Returns:
        True if an item was removed
    """
    content = _load_content(store, location_id)
    remaining = [entry for entry in content if entry.get('id') != item_id]
    if len(remaining) == len(content):
        return False
    _save_content(store, location_id, remaining, notify)
    return True


# -----------------------------------------------------------------------------
# CLI
# -----------------------------------------------------------------------------

def main(argv: Optional[list] = None) -> int:
    """Entry point for the signage-admin command."""
    parser = argparse.ArgumentParser(description="Signage admin tools")
    parser.add_argument('--config', help="YAML settings file")
    parser.add_argument('--store-url', help="Document store API URL override")
    parser.add_argument('--announce', metavar='ENDPOINT',
                        help="ZeroMQ endpoint to announce document changes on")
    subparsers = parser.add_subparsers(dest='command', required=True)

    pair_parser = subparsers.add_parser('pair', help="Pair the device showing a code")
    pair_parser.add_argument('code')
    pair_parser.add_argument('location_id')

    unpair_parser = subparsers.add_parser('unpair', help="Clear a device's location")
    unpair_parser.add_argument('device_id')

    status_parser = subparsers.add_parser('status', help="Show devices of a location")
    status_parser.add_argument('location_id')

    args = parser.parse_args(argv)

    config = get_config(args.config)
    configure_logging(config.log_level)

    store = HttpDocumentStore(
        base_url=args.store_url or config.store_url,
        request_timeout=config.request_timeout
    )
    publisher = None
    if args.announce:
        publisher = MessagePublisher(args.announce, service_name="signage_admin", bind=False)
    notify = publisher.document_changed if publisher else None

    try:
        if args.command == 'pair':
            record = pair_device(store, args.code, args.location_id, notify)
            print(f"Paired {record.id} to {args.location_id}")
        elif args.command == 'unpair':
            unpair_device(store, args.device_id, notify)
            print(f"Unpaired {args.device_id}")
        elif args.command == 'status':
            records = devices_for_location(store, args.location_id)
            now = datetime.now(timezone.utc)
            for record in records:
                state = "online" if is_device_online(record, now, config.online_window) else "offline"
                print(f"{record.id}\t{state}\t{record.last_seen or '-'}")
            print(f"{count_online(records, now, config.online_window)}/{len(records)} online")
    except (PairingError, StoreError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        if publisher:
            publisher.close()
        store.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
