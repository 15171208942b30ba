"""
Stable device identity.
The id is generated once and kept in device.json so it survives restarts.
"""

from dataclasses import dataclass

from signage_common.device_id import generate_device_id
from signage_common.logger import setup_logger

from .config import PlayerConfig

logger = setup_logger(__name__)


@dataclass(frozen=True)
class DeviceIdentity:
    """The device id and whether it was minted on this boot."""

    device_id: str
    created: bool = False


def load_or_create_identity(config: PlayerConfig) -> DeviceIdentity:
    """
    Read the persisted device id, generating and saving one if absent.

    The stored value is returned verbatim. Losing device.json means a new
    id on the next boot.

    Args:
        config: Device-local state

    Returns:
        DeviceIdentity
    """
    config.load_device()
    device_id = config.device_id
    if device_id:
        logger.info("Loaded device id %s", device_id)
        return DeviceIdentity(device_id=device_id, created=False)

    device_id = generate_device_id()
    config.device_id = device_id
    config.save_device()
    logger.info("Generated new device id %s", device_id)
    return DeviceIdentity(device_id=device_id, created=True)
