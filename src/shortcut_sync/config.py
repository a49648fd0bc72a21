"""
Environment-driven settings for the Shortcut sync layer.
"""

from __future__ import annotations

import logging
import os

logger = logging.getLogger(__name__)


def _int_env(var_name: str, default: int) -> int:
    raw = os.getenv(var_name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s value %r; using %d", var_name, raw, default)
        return default


def _float_env(var_name: str, default: float) -> float:
    raw = os.getenv(var_name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s value %r; using %s", var_name, raw, default)
        return default


API_BASE_URL = os.getenv("SHORTCUT_API_BASE_URL", "https://api.app.shortcut.com").rstrip("/")
HTTP_TIMEOUT_SECONDS = _float_env("SHORTCUT_HTTP_TIMEOUT_SECONDS", 15.0)
STORY_PAGE_SIZE = _int_env("SHORTCUT_STORY_PAGE_SIZE", 50)
EPIC_FETCH_CONCURRENCY = max(1, _int_env("SHORTCUT_EPIC_FETCH_CONCURRENCY", 8))

KEYRING_SERVICE = os.getenv("SHORTCUT_KEYRING_SERVICE", "com.charpeni.shortcut-menubar")
KEYRING_ACCOUNT = os.getenv("SHORTCUT_KEYRING_ACCOUNT", "api-token")

LEGACY_TOKEN_PATH = os.path.expanduser(
    os.getenv(
        "SHORTCUT_LEGACY_TOKEN_PATH",
        "~/Library/Application Support/shortcut-menubar/api-token",
    )
)

IDLE_REFRESH_THRESHOLD_SECONDS = _int_env("SHORTCUT_IDLE_REFRESH_SECONDS", 60)
LOG_LEVEL = os.getenv("SHORTCUT_SYNC_LOG_LEVEL", "WARNING").upper()
