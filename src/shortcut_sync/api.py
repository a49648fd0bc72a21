"""
Read-only client for the Shortcut REST API v3.

Every call reads the token from the token store, issues one authenticated GET
and decodes the JSON body into the types in ``models``. Failures surface as a
``ShortcutApiError`` subclass and nothing else.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any, Protocol, TypeVar

import requests

from . import config
from .models import Epic, MemberInfo, Story, StorySearchResults, Team, Workflow, decode_list

logger = logging.getLogger(__name__)

T = TypeVar("T")

TOKEN_HEADER = "Shortcut-Token"


class TokenSource(Protocol):
    def get_api_token(self) -> str | None: ...


class ShortcutApiError(RuntimeError):
    """Raised when a Shortcut API call fails."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class NoCredentialError(ShortcutApiError):
    def __init__(self) -> None:
        super().__init__("no_api_token", "No API token configured")


class RemoteStatusError(ShortcutApiError):
    def __init__(self, status_code: int):
        super().__init__("http_error", f"HTTP error: {status_code}")
        self.status_code = status_code


class TransportError(ShortcutApiError):
    def __init__(self, cause: Exception):
        super().__init__("network_error", f"Network error: {cause}")
        self.cause = cause


class DecodingError(ShortcutApiError):
    def __init__(self, cause: Exception):
        super().__init__("decoding_error", f"Decoding failed: {cause}")
        self.cause = cause


class ShortcutClient:
    """Stateless request/decode wrapper; safe to call from several threads."""

    def __init__(
        self,
        tokens: TokenSource,
        http: requests.Session | None = None,
        base_url: str = config.API_BASE_URL,
        timeout_seconds: float = config.HTTP_TIMEOUT_SECONDS,
        page_size: int = config.STORY_PAGE_SIZE,
    ):
        self._tokens = tokens
        self._http = http or requests.Session()
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._page_size = page_size

        self._stats_lock = threading.Lock()
        self._request_count = 0
        self._last_request: dict[str, Any] | None = None
        self._last_validation_error: ShortcutApiError | None = None

    def _fetch(
        self,
        endpoint: str,
        decode: Callable[[Any], T],
        params: dict[str, str] | None = None,
    ) -> T:
        token = self._tokens.get_api_token()
        if not token:
            raise NoCredentialError()

        started = time.perf_counter()
        try:
            response = self._http.get(
                f"{self._base_url}{endpoint}",
                params=params,
                headers={TOKEN_HEADER: token, "Accept": "application/json"},
                timeout=self._timeout_seconds,
            )
        except requests.RequestException as exc:
            logger.warning("Request to %s failed: %s", endpoint, exc)
            raise TransportError(exc) from exc
        elapsed_ms = (time.perf_counter() - started) * 1000

        status_code = response.status_code
        logger.debug(
            "[%.0fms] %d %s (%d bytes)", elapsed_ms, status_code, endpoint, len(response.content)
        )
        self._record_request(endpoint, status_code, elapsed_ms)

        if not 200 <= status_code <= 299:
            raise RemoteStatusError(status_code)

        try:
            return decode(response.json())
        except (ValueError, KeyError, TypeError) as exc:
            logger.error("Decoding error for %s: %s", endpoint, exc)
            raise DecodingError(exc) from exc

    def _record_request(self, endpoint: str, status_code: int, elapsed_ms: float) -> None:
        with self._stats_lock:
            self._request_count += 1
            self._last_request = {
                "endpoint": endpoint,
                "status": status_code,
                "elapsedMs": round(elapsed_ms, 1),
                "at": time.time(),
            }

    def get_current_member(self) -> MemberInfo:
        return self._fetch("/api/v3/member", MemberInfo.from_api)

    def get_my_stories(self, mention_name: str) -> list[Story]:
        results = self._fetch(
            "/api/v3/search/stories",
            StorySearchResults.from_api,
            params={
                "query": f"owner:{mention_name} !is:done",
                "page_size": str(self._page_size),
            },
        )
        return list(results.data)

    def get_workflows(self) -> list[Workflow]:
        return self._fetch("/api/v3/workflows", lambda p: decode_list(p, Workflow))

    def get_teams(self) -> list[Team]:
        return self._fetch("/api/v3/groups", lambda p: decode_list(p, Team))

    def get_epic(self, epic_id: int) -> Epic:
        return self._fetch(f"/api/v3/epics/{epic_id}", Epic.from_api)

    @property
    def last_validation_error(self) -> ShortcutApiError | None:
        with self._stats_lock:
            return self._last_validation_error

    def validate_token(self) -> bool:
        """Check the stored token against the member endpoint.

        The failure reason is kept on ``last_validation_error``.
        """
        try:
            self.get_current_member()
        except ShortcutApiError as exc:
            with self._stats_lock:
                self._last_validation_error = exc
            logger.info("Token validation failed (%s): %s", exc.code, exc.message)
            return False
        with self._stats_lock:
            self._last_validation_error = None
        return True

    def get_health(self) -> dict[str, Any]:
        with self._stats_lock:
            return {
                "baseUrl": self._base_url,
                "pageSize": self._page_size,
                "requestCount": self._request_count,
                "lastRequest": dict(self._last_request) if self._last_request else None,
                "lastValidationError": (
                    self._last_validation_error.message if self._last_validation_error else None
                ),
            }

    def close(self) -> None:
        self._http.close()
