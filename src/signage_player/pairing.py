"""
Device pairing state machine.
Tracks whether the device has an identity and whether the admin side has
assigned it to a location.
"""

import threading
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from signage_common.device_id import generate_pairing_code
from signage_common.logger import setup_logger

logger = setup_logger(__name__)


class PairingState(Enum):
    """Represents the device's pairing state."""
    UNIDENTIFIED = "unidentified"  # No device id yet
    UNPAIRED = "unpaired"          # Has an id, showing a pairing code
    PAIRED = "paired"              # Assigned to a location


class StateTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""
    pass


class PairingStateMachine:
    """
    State machine for device identity and pairing.

    Valid transitions:
    - UNIDENTIFIED -> UNPAIRED (identity established on boot)
    - UNPAIRED -> PAIRED (device document gains a locationId)
    - PAIRED -> UNPAIRED (admin clears the locationId)

    Pairing is driven from outside: the device only reacts to what it
    observes on its registration document.
    """

    VALID_TRANSITIONS: Dict[PairingState, List[PairingState]] = {
        PairingState.UNIDENTIFIED: [PairingState.UNPAIRED],
        PairingState.UNPAIRED: [PairingState.PAIRED],
        PairingState.PAIRED: [PairingState.UNPAIRED],
    }

    def __init__(
        self,
        on_state_changed: Optional[Callable[['PairingStateMachine', PairingState, PairingState], None]] = None,
        on_location_changed: Optional[Callable[['PairingStateMachine', Optional[str], Optional[str]], None]] = None,
        code_generator: Callable[[], str] = generate_pairing_code
    ):
        """
        Initialize the pairing state machine.

        Args:
            on_state_changed: Callback (self, old_state, new_state)
            on_location_changed: Callback (self, old_location_id, new_location_id)
            code_generator: Produces fresh 6-digit pairing codes
        """
        self._state = PairingState.UNIDENTIFIED
        self._device_id: Optional[str] = None
        self._pairing_code = ''
        self._location_id: Optional[str] = None
        self._on_state_changed = on_state_changed
        self._on_location_changed = on_location_changed
        self._code_generator = code_generator
        self._lock = threading.Lock()

    @property
    def state(self) -> PairingState:
        with self._lock:
            return self._state

    @property
    def device_id(self) -> Optional[str]:
        with self._lock:
            return self._device_id

    @property
    def pairing_code(self) -> str:
        with self._lock:
            return self._pairing_code

    @property
    def location_id(self) -> Optional[str]:
        with self._lock:
            return self._location_id

    @property
    def is_paired(self) -> bool:
        return self.state == PairingState.PAIRED

    def can_transition_to(self, target_state: PairingState) -> bool:
        """Check if transition to target_state is valid (same state counts)."""
        with self._lock:
            if self._state == target_state:
                return True
            return target_state in self.VALID_TRANSITIONS.get(self._state, [])

    def _transition_to(self, target_state: PairingState) -> PairingState:
        """Switch state under the lock; caller notifies. Returns old state."""
        old_state = self._state
        if target_state not in self.VALID_TRANSITIONS.get(old_state, []):
            raise StateTransitionError(
                f"Invalid transition: {old_state.name} -> {target_state.name}"
            )
        self._state = target_state
        logger.info("Pairing transition: %s -> %s", old_state.name, target_state.name)
        return old_state

    def identify(self, device_id: str) -> None:
        """
        Establish the device identity and enter UNPAIRED with a fresh code.

        Raises:
            StateTransitionError: If the device is already identified
            ValueError: If device_id is empty
        """
        if not device_id:
            raise ValueError("device_id must not be empty")

        with self._lock:
            old_state = self._transition_to(PairingState.UNPAIRED)
            self._device_id = device_id
            self._pairing_code = self._code_generator()
            code = self._pairing_code

        logger.info("Device %s identified, pairing code %s", device_id, code)
        self._notify_state(old_state, PairingState.UNPAIRED)

    def observe_assignment(self, location_id: Optional[str]) -> bool:
        """
        React to the locationId seen on the device document.

        Args:
            location_id: Assigned location, or None/'' when unassigned

        Returns:
            True if the state or the assigned location changed

        Raises:
            StateTransitionError: If called before identify()
        """
        location_id = location_id or None

        with self._lock:
            if self._state == PairingState.UNIDENTIFIED:
                raise StateTransitionError("Cannot observe assignment before identification")

            old_location = self._location_id
            if old_location == location_id:
                return False

            old_state = self._state
            new_state = old_state
            if location_id and old_state == PairingState.UNPAIRED:
                self._transition_to(PairingState.PAIRED)
                new_state = PairingState.PAIRED
            elif not location_id and old_state == PairingState.PAIRED:
                self._transition_to(PairingState.UNPAIRED)
                new_state = PairingState.UNPAIRED
                # Old code may already be known to the admin side
                self._pairing_code = self._code_generator()

            self._location_id = location_id

        if old_state != new_state:
            self._notify_state(old_state, new_state)

        if old_location and location_id:
            logger.info("Device reassigned: %s -> %s", old_location, location_id)

        self._notify_location(old_location, location_id)
        return True

    def _notify_state(self, old_state: PairingState, new_state: PairingState) -> None:
        # Callbacks run outside the lock
        if self._on_state_changed:
            try:
                self._on_state_changed(self, old_state, new_state)
            except Exception as e:
                logger.error("Error in pairing state callback: %s", e)

    def _notify_location(self, old_location: Optional[str], new_location: Optional[str]) -> None:
        if self._on_location_changed:
            try:
                self._on_location_changed(self, old_location, new_location)
            except Exception as e:
                logger.error("Error in location change callback: %s", e)

    def get_state_info(self) -> Dict[str, Any]:
        """
        Get information about current state.

        Returns:
            Dictionary with state, device id, pairing code and location
        """
        with self._lock:
            return {
                "state": self._state.value,
                "device_id": self._device_id,
                "pairing_code": self._pairing_code,
                "location_id": self._location_id,
            }

    def __repr__(self) -> str:
        """String representation."""
        return f"PairingStateMachine(state={self.state.name}, location={self.location_id})"
