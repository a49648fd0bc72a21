"""Shortcut story sync: keyring token storage, API client and session cache."""

from .server import main

__all__ = ["main"]
