"""
Device identifier and pairing code generation.
"""

import random
import re
import socket
import uuid

DEVICE_ID_PREFIX = "scr_"

# 12 hex chars = 48 random bits
DEVICE_ID_HEX_LENGTH = 12

PAIRING_CODE_PATTERN = re.compile(r"^\d{6}$")


def generate_device_id() -> str:
    """Generate a new opaque device identifier, e.g. 'scr_3f9a1c0b27de'."""
    return f"{DEVICE_ID_PREFIX}{uuid.uuid4().hex[:DEVICE_ID_HEX_LENGTH]}"


def generate_pairing_code() -> str:
    """Generate a random 6-digit pairing code."""
    return str(random.randint(100000, 999999))


def is_valid_pairing_code(code: str) -> bool:
    """Check that code is exactly six digits."""
    return bool(code) and PAIRING_CODE_PATTERN.match(code) is not None


def get_hostname() -> str:
    """Hostname reported alongside the device id in log lines."""
    try:
        return socket.gethostname()
    except OSError:
        return "unknown"
