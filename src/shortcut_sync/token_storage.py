"""
Keyring-backed storage for the Shortcut API token.

The token lives in the platform keyring under a fixed service/account pair and
is mirrored in memory so repeated reads do not hit the keyring. On construction
a token left behind by the old plaintext-file storage is moved into the keyring
once and the file is wiped.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Any

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from . import config

logger = logging.getLogger(__name__)


class TokenStorage:
    """Thread-safe API token store with an in-memory cache.

    Every public operation holds one lock for its whole cache + keyring
    sequence. None of them raise: keyring failures are logged and reported as
    ``None`` or ``False``.
    """

    def __init__(
        self,
        backend: Any | None = None,
        service: str = config.KEYRING_SERVICE,
        account: str = config.KEYRING_ACCOUNT,
        legacy_path: str | None = config.LEGACY_TOKEN_PATH,
    ):
        self._backend = backend if backend is not None else keyring.get_keyring()
        self._service = service
        self._account = account
        self._legacy_path = legacy_path
        self._lock = threading.Lock()
        self._cached_token: str | None = None

        self._migrate_from_file_storage()

    def save_api_token(self, token: str) -> bool:
        with self._lock:
            saved = self._save_to_keyring(token)
            if saved:
                self._cached_token = token
            return saved

    def get_api_token(self) -> str | None:
        with self._lock:
            if self._cached_token is not None:
                return self._cached_token

            token = self._read_from_keyring()
            if token is not None:
                self._cached_token = token
            return token

    def delete_api_token(self) -> bool:
        with self._lock:
            self._cached_token = None
            return self._delete_from_keyring()

    @property
    def has_api_token(self) -> bool:
        return self.get_api_token() is not None

    def _save_to_keyring(self, token: str) -> bool:
        # Replace rather than update in place.
        self._delete_from_keyring()
        try:
            self._backend.set_password(self._service, self._account, token)
        except (KeyringError, OSError) as exc:
            logger.error("Failed to save token to keyring: %s", exc)
            return False
        logger.debug("Token saved to keyring")
        return True

    def _read_from_keyring(self) -> str | None:
        try:
            return self._backend.get_password(self._service, self._account)
        except (KeyringError, OSError) as exc:
            logger.error("Failed to read token from keyring: %s", exc)
            return None

    def _delete_from_keyring(self) -> bool:
        try:
            self._backend.delete_password(self._service, self._account)
        except PasswordDeleteError as exc:
            # Backends raise this for a missing item too; only a confirmed miss counts as deleted.
            try:
                remaining = self._backend.get_password(self._service, self._account)
            except (KeyringError, OSError) as read_exc:
                logger.error(
                    "Failed to delete token from keyring: %s (lookup failed: %s)", exc, read_exc
                )
                return False
            if remaining is None:
                logger.debug("Token already absent from keyring")
                return True
            logger.error("Failed to delete token from keyring: %s", exc)
            return False
        except (KeyringError, OSError) as exc:
            logger.error("Failed to delete token from keyring: %s", exc)
            return False
        logger.debug("Token deleted from keyring")
        return True

    def _migrate_from_file_storage(self) -> None:
        path = self._legacy_path
        if not path or not os.path.isfile(path):
            return

        logger.info("Found legacy file-based token, migrating to keyring")
        try:
            with open(path, encoding="utf-8") as f:
                token = f.read().strip()

            if not token:
                os.remove(path)
                return

            with self._lock:
                saved = self._save_to_keyring(token)
            if not saved:
                logger.error("Failed to migrate token to keyring, keeping legacy file")
                return

            _wipe_file(path)
            _remove_dir_if_empty(os.path.dirname(path))
            logger.info("Migrated token to keyring and removed legacy file")
        except (OSError, UnicodeDecodeError) as exc:
            logger.error("Failed to migrate legacy token file %s: %s", path, exc)


def _wipe_file(path: str) -> None:
    """Overwrite a file with zero bytes of the same length, then remove it."""
    size = os.path.getsize(path)
    if size > 0:
        with open(path, "r+b") as f:
            f.write(b"\0" * size)
            f.flush()
            os.fsync(f.fileno())
    os.remove(path)


def _remove_dir_if_empty(directory: str) -> None:
    try:
        if directory and not os.listdir(directory):
            os.rmdir(directory)
    except OSError as exc:
        logger.debug("Could not remove legacy token directory %s: %s", directory, exc)
