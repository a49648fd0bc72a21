"""
Synchronous, thread-safe facade over the refresh engine.

The engine owns its state on a single asyncio event loop. This module runs that
loop on a dedicated daemon thread and funnels every call into it, so callers on
any thread (MCP tool handlers included) never touch engine state directly.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
import time
from typing import Any

from . import config
from .api import ShortcutClient
from .engine import SyncEngine
from .models import Story
from .token_storage import TokenStorage

logger = logging.getLogger(__name__)

DEFAULT_CALL_TIMEOUT_SECONDS = 120.0


class EngineSession:
    """Owns the token store, API client and engine for the process lifetime."""

    def __init__(
        self,
        engine: SyncEngine,
        client: ShortcutClient | None = None,
        idle_refresh_seconds: int = config.IDLE_REFRESH_THRESHOLD_SECONDS,
        call_timeout_seconds: float = DEFAULT_CALL_TIMEOUT_SECONDS,
    ):
        self._engine = engine
        self._client = client
        self._idle_refresh_seconds = idle_refresh_seconds
        self._call_timeout_seconds = call_timeout_seconds

        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._lock = threading.RLock()

    @classmethod
    def create(cls) -> EngineSession:
        """Build the default keyring-backed store, HTTP client and engine."""
        tokens = TokenStorage()
        client = ShortcutClient(tokens)
        return cls(SyncEngine(tokens, client), client=client)

    def _ensure_loop(self) -> None:
        if self._loop and self._thread and self._thread.is_alive():
            return

        loop = asyncio.new_event_loop()

        def _run_loop() -> None:
            asyncio.set_event_loop(loop)
            loop.run_forever()

        thread = threading.Thread(target=_run_loop, daemon=True, name="shortcut-sync-engine")
        thread.start()

        self._loop = loop
        self._thread = thread

    def _submit(self, coro: Any) -> Any:
        with self._lock:
            self._ensure_loop()
            loop = self._loop
        if not loop:
            raise RuntimeError("event loop not initialized")
        future = asyncio.run_coroutine_threadsafe(coro, loop)
        try:
            return future.result(timeout=self._call_timeout_seconds)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise

    def _call(self, fn: Any, *args: Any) -> Any:
        """Run a plain engine method on the loop thread."""

        async def _run() -> Any:
            return fn(*args)

        return self._submit(_run())

    def save_token(self, token: str) -> bool:
        return self._submit(self._engine.save_token(token.strip()))

    def refresh(self) -> dict[str, Any]:
        self._submit(self._engine.refresh())
        return self.get_status()

    def logout(self) -> dict[str, Any]:
        self._submit(self._engine.logout())
        return self.get_status()

    def ensure_fresh(self) -> None:
        """Refresh when nothing has been loaded yet or the last load is older than the idle threshold."""
        health = self._call(self._engine.get_health)
        if not health["isAuthenticated"] or health["isLoading"]:
            return
        last = health["lastRefreshAt"]
        if last is None or time.time() - last >= self._idle_refresh_seconds:
            logger.info("Story list is stale, refreshing")
            self._submit(self._engine.refresh())

    def list_stories(self) -> dict[str, Any]:
        return self._call(self._render_snapshot)

    def get_story(self, story_id: int) -> dict[str, Any] | None:
        return self._call(self._render_one, story_id)

    def get_status(self) -> dict[str, Any]:
        status = self._call(self._engine.get_health)
        if self._client is not None:
            status["client"] = self._client.get_health()
        return status

    def _render_snapshot(self) -> dict[str, Any]:
        cache = self._engine.cache
        return {
            "mentionName": cache.current_user.mention_name if cache.current_user else None,
            "isLoading": cache.is_loading,
            "error": cache.error,
            "stories": [self._render_story(s) for s in cache.stories],
            "totalCount": len(cache.stories),
        }

    def _render_one(self, story_id: int) -> dict[str, Any] | None:
        for story in self._engine.cache.stories:
            if story.id == story_id:
                return self._render_story(story)
        return None

    def _render_story(self, story: Story) -> dict[str, Any]:
        engine = self._engine
        user = engine.cache.current_user
        mention = user.mention_name if user else None
        state = engine.workflow_state_for(story)
        workflow = engine.workflow_for(story)
        team = engine.team_for(story)
        epic = engine.epic_for(story)
        return {
            "id": story.id,
            "name": story.name,
            "kind": story.kind,
            "blocked": story.is_blocked,
            "url": story.app_url,
            "state": state.name if state else None,
            "stateType": state.type if state else None,
            "workflow": workflow.name if workflow else None,
            "team": team.name if team else None,
            "epic": epic.name if epic else None,
            "branchName": story.branch_name(mention),
            "checkoutCommand": story.checkout_command(mention),
        }

    def close(self) -> None:
        with self._lock:
            loop = self._loop
            thread = self._thread

            if loop:
                loop.call_soon_threadsafe(loop.stop)

            if thread and thread.is_alive():
                thread.join(timeout=1.0)

            if loop and (thread is None or not thread.is_alive()):
                loop.close()
            elif thread and thread.is_alive():
                logger.warning("Engine loop thread did not stop within timeout")

            if self._client is not None:
                self._client.close()

            self._loop = None
            self._thread = None
