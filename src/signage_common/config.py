"""
Configuration management for the signage player.
Loads settings from a YAML file, layered over built-in defaults.
"""

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULTS: Dict[str, Any] = {
    'store': {
        'base_url': 'http://localhost:8080/api/v1',
        'notify_url': '',
        'poll_interval': 15,
        'request_timeout': 10,
    },
    'player': {
        'config_dir': '~/.signage',
        'heartbeat_interval': 30,
        'clock_interval': 1,
        'default_duration': 10,
        'online_window': 60,
    },
    'logging': {
        'level': 'INFO',
    },
}

# Environment variable -> dotted config key
ENV_OVERRIDES = {
    'SIGNAGE_STORE_URL': 'store.base_url',
    'SIGNAGE_NOTIFY_URL': 'store.notify_url',
    'SIGNAGE_CONFIG_DIR': 'player.config_dir',
    'SIGNAGE_LOG_LEVEL': 'logging.level',
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into a copy of base."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Config:
    """Manages application configuration from YAML files."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to config file. If None, uses config/default_config.yaml
                         when it exists and built-in defaults otherwise.
        """
        self._explicit = config_path is not None
        if config_path is None:
            project_root = Path(__file__).parent.parent.parent
            config_path = project_root / "config" / "default_config.yaml"

        self.config_path = Path(config_path)
        self._config: Dict[str, Any] = {}
        self.load()

    def load(self) -> None:
        """Load configuration from the YAML file."""
        data: Dict[str, Any] = {}

        if self.config_path.exists():
            with open(self.config_path, 'r') as f:
                data = yaml.safe_load(f) or {}
        elif self._explicit:
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        self._config = _merge(DEFAULTS, data)
        self._apply_env_overrides()

    def _apply_env_overrides(self) -> None:
        """Override config values from environment variables."""
        for env_name, key in ENV_OVERRIDES.items():
            if env_name in os.environ:
                self.set(key, os.environ[env_name])

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key (e.g., 'store.base_url')
            default: Default value if key not found

        Returns:
            Configuration value or default

        Example:
            >>> config = Config()
            >>> config.get('player.heartbeat_interval')
            30
        """
        value: Any = self._config

        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """
        Set configuration value using dot notation.

        Args:
            key: Configuration key (e.g., 'store.notify_url')
            value: Value to set
        """
        keys = key.split('.')
        config = self._config

        for k in keys[:-1]:
            if not isinstance(config.get(k), dict):
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    def save(self, path: Optional[str] = None) -> None:
        """
        Save configuration to YAML file.

        Args:
            path: Path to save to. If None, uses original config_path
        """
        save_path = Path(path) if path else self.config_path
        save_path.parent.mkdir(parents=True, exist_ok=True)

        with open(save_path, 'w') as f:
            yaml.dump(self._config, f, default_flow_style=False, indent=2)

    @property
    def store_url(self) -> str:
        """Get the document store base URL."""
        return self.get('store.base_url', '')

    @property
    def notify_url(self) -> str:
        """Get the change-feed (ZeroMQ) URL, empty when polling only."""
        return self.get('store.notify_url', '') or ''

    @property
    def poll_interval(self) -> float:
        return float(self.get('store.poll_interval', 15))

    @property
    def request_timeout(self) -> float:
        return float(self.get('store.request_timeout', 10))

    @property
    def config_dir(self) -> str:
        """Get the device-local state directory (user home expanded)."""
        return str(Path(self.get('player.config_dir', '~/.signage')).expanduser())

    @property
    def heartbeat_interval(self) -> float:
        return float(self.get('player.heartbeat_interval', 30))

    @property
    def clock_interval(self) -> float:
        return float(self.get('player.clock_interval', 1))

    @property
    def default_duration(self) -> int:
        return int(self.get('player.default_duration', 10))

    @property
    def online_window(self) -> float:
        return float(self.get('player.online_window', 60))

    @property
    def log_level(self) -> str:
        return str(self.get('logging.level', 'INFO'))

    def __repr__(self) -> str:
        """String representation."""
        return f"Config(path={self.config_path})"


# Global config instance (can be imported by other modules)
_global_config: Optional[Config] = None


def get_config(config_path: Optional[str] = None) -> Config:
    """
    Get the global configuration instance.

    Args:
        config_path: Path to config file (only used on first call)

    Returns:
        Config instance
    """
    global _global_config

    if _global_config is None:
        _global_config = Config(config_path)

    return _global_config
