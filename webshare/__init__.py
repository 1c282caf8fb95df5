"""Ephemeral, disk-backed file sharing."""

__version__ = "0.1.0"
