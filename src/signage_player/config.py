"""
Device-local persisted state for the signage player.
Handles device.json: the device id and the last known assignment.
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional

from signage_common.logger import setup_logger

logger = setup_logger(__name__)


class PlayerConfig:
    """Manages the device's local JSON state file."""

    # Default state directory
    DEFAULT_CONFIG_DIR = "~/.signage"

    DEVICE_FILE = "device.json"

    def __init__(self, config_dir: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            config_dir: Path to the state directory. If None, uses DEFAULT_CONFIG_DIR
        """
        if config_dir is None:
            config_dir = self.DEFAULT_CONFIG_DIR

        self.config_dir = Path(config_dir).expanduser()
        self._device: Dict[str, Any] = {}

        if self.config_dir.exists():
            self.load_device()

    def _load_json(self, filename: str) -> Dict[str, Any]:
        """
        Load a JSON file from the state directory.

        A missing or corrupt file yields an empty dictionary.
        """
        file_path = self.config_dir / filename
        if not file_path.exists():
            return {}

        try:
            with open(file_path, 'r') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Could not read %s, starting fresh: %s", file_path, e)
            return {}

        return data if isinstance(data, dict) else {}

    def _save_json(self, filename: str, data: Dict[str, Any]) -> None:
        """Save data to a JSON file in the state directory."""
        self.config_dir.mkdir(parents=True, exist_ok=True)

        file_path = self.config_dir / filename
        with open(file_path, 'w') as f:
            json.dump(data, f, indent=2)

    def load_device(self) -> None:
        """Load device state from file."""
        self._device = self._load_json(self.DEVICE_FILE)

    def save_device(self) -> None:
        """Save device state to file."""
        self._save_json(self.DEVICE_FILE, self._device)

    @property
    def device_id(self) -> str:
        """Get the persisted device id ('' if none yet)."""
        return str(self._device.get('device_id') or '')

    @device_id.setter
    def device_id(self, value: str) -> None:
        self._device['device_id'] = value

    @property
    def location_id(self) -> str:
        """Last location this device was seen assigned to (informational)."""
        return str(self._device.get('location_id') or '')

    @location_id.setter
    def location_id(self, value: Optional[str]) -> None:
        if value:
            self._device['location_id'] = value
        else:
            self._device.pop('location_id', None)

    def get_device_config(self) -> Dict[str, Any]:
        """Get raw device state dictionary."""
        return self._device.copy()

    def clear(self) -> None:
        """Forget all local state (simulates storage loss)."""
        self._device = {}
        file_path = self.config_dir / self.DEVICE_FILE
        if file_path.exists():
            file_path.unlink()

    def __repr__(self) -> str:
        """String representation."""
        return f"PlayerConfig(config_dir={self.config_dir})"
