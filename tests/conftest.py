"""
Pytest fixtures shared by the signage player tests.

Time is simulated with ManualClock, starting Monday 2024-01-15 12:00 local
time, and documents live in the in-memory store.
"""

import itertools
import tempfile
from datetime import datetime

import pytest

from signage_player.config import PlayerConfig
from signage_player.store import MemoryDocumentStore
from signage_player.timers import ManualClock


MONDAY_NOON = datetime(2024, 1, 15, 12, 0, 0)


@pytest.fixture
def clock():
    """Simulated clock at Monday noon."""
    return ManualClock(MONDAY_NOON)


@pytest.fixture
def store():
    """Empty in-memory document store."""
    return MemoryDocumentStore()


@pytest.fixture
def temp_config_dir():
    """Create a temporary device state directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def player_config(temp_config_dir):
    """PlayerConfig backed by the temporary directory."""
    return PlayerConfig(config_dir=temp_config_dir)


@pytest.fixture
def code_generator():
    """Deterministic pairing codes: 100001, 100002, ..."""
    counter = itertools.count(100001)
    return lambda: str(next(counter))
