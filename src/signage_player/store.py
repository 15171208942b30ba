"""
Document store access for the signage player.

The admin side keeps one document per location ('location_<id>') and the
player keeps one per device ('device_<id>'). Stores deliver changes as
snapshot callbacks through subscriptions; every subscription must be
closed by whoever opened it.

Writes use merge-patch semantics: with merge=True, keys are overwritten and
a None value removes the key.
"""

import copy
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from signage_common.ipc import MessageSubscriber, MessageType
from signage_common.logger import setup_logger

logger = setup_logger(__name__)

DEVICE_PREFIX = "device_"
LOCATION_PREFIX = "location_"


def device_key(device_id: str) -> str:
    """Store key of a device registration document."""
    return f"{DEVICE_PREFIX}{device_id}"


def location_key(location_id: str) -> str:
    """Store key of a location (playlist) document."""
    return f"{LOCATION_PREFIX}{location_id}"


class StoreError(Exception):
    """Raised when the document store cannot be reached or rejects a request."""
    pass


@dataclass(frozen=True)
class Snapshot:
    """State of one document at one point in time."""

    key: str
    data: Optional[Dict[str, Any]]

    @property
    def exists(self) -> bool:
        return self.data is not None


SnapshotCallback = Callable[[Snapshot], None]
ErrorCallback = Callable[[Exception], None]


def apply_merge(current: Optional[Dict[str, Any]], patch: Dict[str, Any]) -> Dict[str, Any]:
    """Apply a shallow merge-patch (None deletes the key)."""
    merged = dict(current or {})
    for key, value in patch.items():
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = value
    return merged


class Subscription(ABC):
    """Handle for a live document subscription."""

    def __init__(self, key: str):
        self.key = key
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @abstractmethod
    def close(self) -> None:
        """Stop delivering snapshots. Idempotent."""


class DocumentStore(ABC):
    """Minimal document store interface used by the player and admin tools."""

    @abstractmethod
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Fetch a document, or None if it does not exist."""

    @abstractmethod
    def set(self, key: str, data: Dict[str, Any], merge: bool = True) -> None:
        """Write a document (merge-patch when merge=True, replace otherwise)."""

    @abstractmethod
    def find(self, field: str, value: Any) -> List[Tuple[str, Dict[str, Any]]]:
        """Return (key, data) for every document whose field equals value."""

    @abstractmethod
    def subscribe(
        self,
        key: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None
    ) -> Subscription:
        """Deliver the current snapshot of key, then one per change."""

    def close(self) -> None:
        """Release transport resources."""


# -----------------------------------------------------------------------------
# In-memory store
# -----------------------------------------------------------------------------

class _MemorySubscription(Subscription):

    def __init__(self, store: 'MemoryDocumentStore', key: str,
                 on_snapshot: SnapshotCallback, on_error: Optional[ErrorCallback]):
        super().__init__(key)
        self._store = store
        self.on_snapshot = on_snapshot
        self.on_error = on_error

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._store._remove_subscription(self)


class MemoryDocumentStore(DocumentStore):
    """
    In-process document store.

    Subscribers are notified synchronously on the writing thread, in the
    order writes happen. Used for tests and for running a player without
    a backend.
    """

    def __init__(self, documents: Optional[Dict[str, Dict[str, Any]]] = None):
        self._documents: Dict[str, Dict[str, Any]] = copy.deepcopy(documents or {})
        self._subscriptions: Dict[str, List[_MemorySubscription]] = {}
        self._lock = threading.RLock()

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            data = self._documents.get(key)
            return copy.deepcopy(data) if data is not None else None

    def set(self, key: str, data: Dict[str, Any], merge: bool = True) -> None:
        with self._lock:
            if merge:
                new_data = apply_merge(self._documents.get(key), copy.deepcopy(data))
            else:
                new_data = copy.deepcopy(data)
            self._documents[key] = new_data
        self._notify(key)

    def delete(self, key: str) -> None:
        with self._lock:
            self._documents.pop(key, None)
        self._notify(key)

    def find(self, field: str, value: Any) -> List[Tuple[str, Dict[str, Any]]]:
        with self._lock:
            return [
                (key, copy.deepcopy(data))
                for key, data in self._documents.items()
                if data.get(field) == value
            ]

    def keys(self, prefix: str = '') -> List[str]:
        with self._lock:
            return [key for key in self._documents if key.startswith(prefix)]

    def subscribe(
        self,
        key: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None
    ) -> Subscription:
        subscription = _MemorySubscription(self, key, on_snapshot, on_error)
        with self._lock:
            self._subscriptions.setdefault(key, []).append(subscription)
        on_snapshot(Snapshot(key, self.get(key)))
        return subscription

    def fail(self, key: str, error: Exception) -> None:
        """Report a transport error to every subscriber of key."""
        with self._lock:
            subscribers = list(self._subscriptions.get(key, []))
        for subscription in subscribers:
            if subscription.on_error and not subscription.closed:
                subscription.on_error(error)

    def active_subscriptions(self, key: Optional[str] = None) -> int:
        """Number of open subscriptions (for one key, or in total)."""
        with self._lock:
            if key is not None:
                return len(self._subscriptions.get(key, []))
            return sum(len(subs) for subs in self._subscriptions.values())

    def _remove_subscription(self, subscription: _MemorySubscription) -> None:
        with self._lock:
            subscribers = self._subscriptions.get(subscription.key, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscriptions.pop(subscription.key, None)

    def _notify(self, key: str) -> None:
        with self._lock:
            subscribers = list(self._subscriptions.get(key, []))
        snapshot = Snapshot(key, self.get(key))
        for subscription in subscribers:
            if not subscription.closed:
                subscription.on_snapshot(snapshot)


# -----------------------------------------------------------------------------
# HTTP store with ZeroMQ change feed
# -----------------------------------------------------------------------------

class _PollingSubscription(Subscription):
    """
    Watches one document from a background thread.

    Fetches immediately, then again whenever the change feed mentions the
    key or poll_interval elapses. Only changed content is delivered. Errors
    are reported and the next poll simply tries again.
    """

    def __init__(self, store: 'HttpDocumentStore', key: str,
                 on_snapshot: SnapshotCallback, on_error: Optional[ErrorCallback]):
        super().__init__(key)
        self._store = store
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self._wake = threading.Event()
        self._last: Optional[Snapshot] = None
        self._failing = False
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._run,
            name=f"Subscription-{self.key}",
            daemon=True
        )
        self._thread.start()

    def notify_changed(self) -> None:
        self._wake.set()

    def poll_once(self) -> bool:
        """
        Fetch the document and deliver it if it changed.

        Returns:
            True if the fetch succeeded
        """
        try:
            data = self._store.get(self.key)
        except StoreError as e:
            if not self._failing:
                logger.warning("Subscription to %s failing: %s", self.key, e)
            self._failing = True
            if self._on_error and not self._closed:
                self._on_error(e)
            return False

        if self._failing:
            logger.info("Subscription to %s recovered", self.key)
            self._failing = False

        snapshot = Snapshot(self.key, data)
        if snapshot != self._last and not self._closed:
            self._last = snapshot
            self._on_snapshot(snapshot)
        return True

    def _run(self) -> None:
        while not self._closed:
            try:
                self.poll_once()
            except Exception:
                logger.exception("Unexpected error in subscription to %s", self.key)
            self._wake.wait(timeout=self._store.poll_interval)
            self._wake.clear()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._wake.set()
        self._store._remove_subscription(self)
        if self._thread and self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout=2.0)


class HttpDocumentStore(DocumentStore):
    """
    Document store backed by the CMS REST API.

    GET/PATCH/PUT {base_url}/documents/{key}, GET {base_url}/documents?field=value.
    When notify_url is set, a ZeroMQ subscriber wakes subscriptions as soon
    as the CMS announces a write; polling still runs as a fallback.
    """

    DEFAULT_POLL_INTERVAL = 15

    # Request timeout in seconds
    REQUEST_TIMEOUT = 10

    def __init__(
        self,
        base_url: str,
        notify_url: str = '',
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        request_timeout: float = REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the HTTP store.

        Args:
            base_url: CMS API root, e.g. 'http://cms:8080/api/v1'
            notify_url: ZeroMQ PUB endpoint of the change feed ('' to poll only)
            poll_interval: Seconds between polls of each subscribed document
            request_timeout: Seconds per HTTP request
            session: requests session (created if None)
        """
        self.base_url = base_url.rstrip('/')
        self.notify_url = notify_url
        self.poll_interval = poll_interval
        self.request_timeout = request_timeout
        self._session = session or requests.Session()

        self._subscriptions: Dict[str, List[_PollingSubscription]] = {}
        self._lock = threading.Lock()

        self._feed_thread: Optional[threading.Thread] = None
        self._feed_stop = threading.Event()

        logger.info(
            "HttpDocumentStore initialized - base_url: %s, change feed: %s, poll: %ss",
            self.base_url,
            self.notify_url or 'disabled',
            self.poll_interval
        )

    def _url(self, key: str) -> str:
        return f"{self.base_url}/documents/{key}"

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            response = self._session.get(self._url(key), timeout=self.request_timeout)
        except requests.RequestException as e:
            raise StoreError(f"GET {key} failed: {e}") from e

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise StoreError(f"GET {key} failed: HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise StoreError(f"GET {key} returned invalid JSON") from e

        if not isinstance(data, dict):
            raise StoreError(f"GET {key} returned a non-object document")
        return data

    def set(self, key: str, data: Dict[str, Any], merge: bool = True) -> None:
        method = self._session.patch if merge else self._session.put
        try:
            response = method(self._url(key), json=data, timeout=self.request_timeout)
        except requests.RequestException as e:
            raise StoreError(f"Write to {key} failed: {e}") from e

        if response.status_code not in (200, 201, 204):
            raise StoreError(f"Write to {key} failed: HTTP {response.status_code}")

    def find(self, field: str, value: Any) -> List[Tuple[str, Dict[str, Any]]]:
        try:
            response = self._session.get(
                f"{self.base_url}/documents",
                params={field: value},
                timeout=self.request_timeout
            )
        except requests.RequestException as e:
            raise StoreError(f"Query {field}={value} failed: {e}") from e

        if response.status_code != 200:
            raise StoreError(f"Query {field}={value} failed: HTTP {response.status_code}")

        try:
            results = response.json()
        except ValueError as e:
            raise StoreError("Query returned invalid JSON") from e

        return [
            (entry['key'], entry.get('data') or {})
            for entry in results
            if isinstance(entry, dict) and 'key' in entry
        ]

    def subscribe(
        self,
        key: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None
    ) -> Subscription:
        subscription = _PollingSubscription(self, key, on_snapshot, on_error)
        with self._lock:
            self._subscriptions.setdefault(key, []).append(subscription)
        self._ensure_change_feed()
        subscription.start()
        logger.debug("Subscribed to %s", key)
        return subscription

    def _remove_subscription(self, subscription: _PollingSubscription) -> None:
        with self._lock:
            subscribers = self._subscriptions.get(subscription.key, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscriptions.pop(subscription.key, None)
        logger.debug("Unsubscribed from %s", subscription.key)

    def active_subscriptions(self) -> int:
        with self._lock:
            return sum(len(subs) for subs in self._subscriptions.values())

    def handle_document_changed(self, key: str) -> None:
        """Wake every subscription watching key."""
        with self._lock:
            subscribers = list(self._subscriptions.get(key, []))
        for subscription in subscribers:
            subscription.notify_changed()

    # Change feed

    def _ensure_change_feed(self) -> None:
        if not self.notify_url or self._feed_thread is not None:
            return

        self._feed_stop.clear()
        self._feed_thread = threading.Thread(
            target=self._change_feed_loop,
            name="ChangeFeed",
            daemon=True
        )
        self._feed_thread.start()

    def _change_feed_loop(self) -> None:
        try:
            subscriber = MessageSubscriber(self.notify_url, service_name="signage_player")
            subscriber.subscribe_to(MessageType.DOCUMENT_CHANGED)
        except Exception as e:
            logger.error("Change feed unavailable, polling only: %s", e)
            return

        try:
            while not self._feed_stop.is_set():
                message = subscriber.receive(timeout_ms=1000)
                if message is None or message.msg_type != MessageType.DOCUMENT_CHANGED:
                    continue
                key = message.data.get('key')
                if key:
                    self.handle_document_changed(key)
        finally:
            subscriber.close()

    def close(self) -> None:
        """Close every subscription and stop the change feed."""
        with self._lock:
            subscriptions = [s for subs in self._subscriptions.values() for s in subs]
        for subscription in subscriptions:
            subscription.close()

        self._feed_stop.set()
        if self._feed_thread and self._feed_thread.is_alive():
            self._feed_thread.join(timeout=2.0)
        self._feed_thread = None
        self._session.close()
        logger.info("HttpDocumentStore closed")
