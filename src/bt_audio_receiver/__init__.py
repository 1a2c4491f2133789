"""Bluetooth audio receiver: turn this host into an A2DP sink for paired devices."""

__version__ = "0.1.0"
