"""
Signage player package.
Contains modules for playlist scheduling, item validity, device pairing,
heartbeat reporting, and document store synchronization.
"""

__version__ = "0.1.0"
