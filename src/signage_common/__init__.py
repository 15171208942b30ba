"""
Shared helpers for the signage player: logging, YAML configuration,
ZeroMQ change-feed messaging, and device identifiers.
"""
