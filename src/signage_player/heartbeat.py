"""
Heartbeat Reporter - republishes the device registration at a fixed interval.
Overwrites {id, pairingCode, lastSeen} on the device document every 30 seconds.

The payload is built on the loop thread; the store write happens on a
background writer thread so a slow or unreachable store never delays
playback timers.
"""

import threading
from typing import Any, Dict, Optional

from signage_common.logger import setup_logger

from .models import format_timestamp
from .pairing import PairingStateMachine
from .store import DocumentStore, StoreError, device_key
from .timers import TimerHandle, TimerService

logger = setup_logger(__name__)


class HeartbeatReporter:
    """Publishes device liveness and the current pairing code."""

    DEFAULT_INTERVAL = 30  # seconds between heartbeats

    def __init__(
        self,
        store: DocumentStore,
        pairing: PairingStateMachine,
        timers: TimerService,
        interval: float = DEFAULT_INTERVAL,
        background: bool = True
    ):
        """
        Initialize heartbeat reporter.

        Args:
            store: Document store holding the device registration
            pairing: Source of the device id and pairing code
            timers: Timer service driving the interval
            interval: Seconds between heartbeats (default: 30)
            background: Write on a dedicated thread (False writes inline)
        """
        self._store = store
        self._pairing = pairing
        self._timers = timers
        self.interval = interval
        self.background = background

        self._timer: Optional[TimerHandle] = None

        # Writer thread state, guarded by _cond
        self._cond = threading.Condition()
        self._thread: Optional[threading.Thread] = None
        self._writer_running = False
        self._pending: Optional[Dict[str, Any]] = None
        self._writing = False

        self._last_heartbeat_time: Optional[str] = None
        self._last_heartbeat_success = False
        self._consecutive_failures = 0

    def build_payload(self) -> Dict[str, Any]:
        """The fields this device owns on its registration document."""
        return {
            "id": self._pairing.device_id,
            "pairingCode": self._pairing.pairing_code,
            "lastSeen": format_timestamp(self._timers.now()),
        }

    def send_heartbeat(self, payload: Optional[Dict[str, Any]] = None) -> bool:
        """
        Merge the payload onto the device document (blocking).

        Never touches locationId; that field belongs to the admin side.

        Args:
            payload: Prebuilt payload; built from the current state if omitted

        Returns:
            True if the write succeeded, False otherwise
        """
        if payload is None:
            if not self._pairing.device_id:
                logger.warning("Cannot send heartbeat: device not identified")
                return False
            payload = self.build_payload()

        try:
            self._store.set(device_key(payload["id"]), payload, merge=True)
        except StoreError as e:
            self._last_heartbeat_success = False
            self._consecutive_failures += 1
            logger.warning("Heartbeat failed (%d in a row): %s", self._consecutive_failures, e)
            return False

        self._last_heartbeat_time = payload["lastSeen"]
        self._last_heartbeat_success = True
        self._consecutive_failures = 0
        logger.debug("Heartbeat sent: %s", payload["lastSeen"])
        return True

    def queue_heartbeat(self) -> None:
        """
        Publish the current registration without blocking the caller.

        Snapshots the payload now and hands it to the writer thread. If the
        previous write is still waiting, the newer payload replaces it.
        """
        if not self._pairing.device_id:
            logger.warning("Cannot send heartbeat: device not identified")
            return

        payload = self.build_payload()

        if self._thread is None:
            self.send_heartbeat(payload)
            return

        with self._cond:
            if self._pending is not None:
                logger.debug("Replacing heartbeat still waiting for the writer")
            self._pending = payload
            self._cond.notify_all()

    def _writer_loop(self) -> None:
        """Background thread loop for writing heartbeats."""
        logger.info("Heartbeat writer started")

        while True:
            with self._cond:
                while self._pending is None and self._writer_running:
                    self._cond.wait()
                if not self._writer_running:
                    break
                payload, self._pending = self._pending, None
                self._writing = True

            try:
                self.send_heartbeat(payload)
            except Exception:
                logger.exception("Unexpected heartbeat write error")
            finally:
                with self._cond:
                    self._writing = False
                    self._cond.notify_all()

        logger.info("Heartbeat writer stopped")

    def flush(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until every queued heartbeat has been written.

        Returns:
            True if the writer went idle within timeout
        """
        with self._cond:
            return self._cond.wait_for(
                lambda: self._pending is None and not self._writing, timeout
            )

    def start(self) -> None:
        """Send one heartbeat now, then every interval."""
        if self._timer is not None:
            logger.warning("Heartbeat reporter already running")
            return

        if self.background:
            self._writer_running = True
            self._thread = threading.Thread(
                target=self._writer_loop, name="heartbeat-writer", daemon=True
            )
            self._thread.start()

        self.queue_heartbeat()
        self._timer = self._timers.call_every(self.interval, self.queue_heartbeat)
        logger.info("Heartbeat reporter started (interval: %ss)", self.interval)

    def stop(self) -> None:
        """Stop the heartbeat timer and the writer thread."""
        if self._timer is None:
            return

        self._timer.cancel()
        self._timer = None

        if self._thread:
            with self._cond:
                self._writer_running = False
                self._pending = None
                self._cond.notify_all()
            self._thread.join(timeout=5)
            self._thread = None

        logger.info("Heartbeat reporter stopped")

    def is_running(self) -> bool:
        """Check if heartbeat reporter is running."""
        return self._timer is not None

    def get_last_heartbeat_info(self) -> Dict[str, Any]:
        """
        Get information about the last heartbeat.

        Returns:
            Dictionary with last heartbeat details
        """
        return {
            "last_time": self._last_heartbeat_time,
            "last_success": self._last_heartbeat_success,
            "consecutive_failures": self._consecutive_failures
        }
