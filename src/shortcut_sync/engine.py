"""
Session cache and refresh cycle for the current member's Shortcut stories.

All state here belongs to one asyncio event loop. Blocking client calls run in
worker threads via ``asyncio.to_thread``; their results are applied back on the
loop, so readers on the loop never observe a half-updated map.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

from . import config
from .api import ShortcutApiError
from .models import Epic, MemberInfo, Story, Team, Workflow, WorkflowState

logger = logging.getLogger(__name__)

NOT_CONFIGURED_MESSAGE = "Please configure your API token"
SAVE_FAILED_MESSAGE = "Failed to save token"
INVALID_TOKEN_MESSAGE = "Invalid API token"

STATE_TYPE_PRIORITY = {"started": 0, "unstarted": 1, "backlog": 2}
UNRESOLVED_PRIORITY = 3


class TokenStore(Protocol):
    def save_api_token(self, token: str) -> bool: ...

    def delete_api_token(self) -> bool: ...

    @property
    def has_api_token(self) -> bool: ...


class ShortcutReader(Protocol):
    def get_current_member(self) -> MemberInfo: ...

    def get_workflows(self) -> list[Workflow]: ...

    def get_teams(self) -> list[Team]: ...

    def get_epic(self, epic_id: int) -> Epic: ...

    def get_my_stories(self, mention_name: str) -> list[Story]: ...

    def validate_token(self) -> bool: ...


class EngineState(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    REFRESHING = "refreshing"


@dataclass
class SessionCache:
    """Everything fetched this session. Reference maps only grow until logout."""

    current_user: MemberInfo | None = None
    workflows: dict[int, Workflow] = field(default_factory=dict)
    teams: dict[str, Team] = field(default_factory=dict)
    epics: dict[int, Epic] = field(default_factory=dict)
    stories: list[Story] = field(default_factory=list)
    is_loading: bool = False
    error: str | None = None
    last_refresh_at: float | None = None


def state_priority(state_type: str | None) -> int:
    return STATE_TYPE_PRIORITY.get(state_type or "", UNRESOLVED_PRIORITY)


class SyncEngine:
    """Drives login, refresh and logout over a ``SessionCache``."""

    def __init__(
        self,
        tokens: TokenStore,
        client: ShortcutReader,
        epic_concurrency: int = config.EPIC_FETCH_CONCURRENCY,
    ):
        self._tokens = tokens
        self._client = client
        self._epic_concurrency = max(1, epic_concurrency)
        self.cache = SessionCache()
        self.is_authenticated = tokens.has_api_token
        self._authenticating = False
        self._refresh_task: asyncio.Task[None] | None = None
        # Bumped on logout so an in-flight cycle cannot repopulate a cleared cache.
        self._generation = 0

    @property
    def state(self) -> EngineState:
        if self._authenticating:
            return EngineState.AUTHENTICATING
        if not self.is_authenticated:
            return EngineState.UNAUTHENTICATED
        if self.cache.is_loading:
            return EngineState.REFRESHING
        return EngineState.READY

    async def save_token(self, token: str) -> bool:
        """Store, validate and load a token.

        A stored token starts a new session: identity and reference data
        cached under the previous token are dropped, so a token swap without
        logout never searches stories under the old member.
        """
        saved = await asyncio.to_thread(self._tokens.save_api_token, token)
        if not saved:
            self.cache.error = SAVE_FAILED_MESSAGE
            return False

        self._reset_session()
        self.is_authenticated = True
        self._authenticating = True
        try:
            valid = await asyncio.to_thread(self._client.validate_token)
        finally:
            self._authenticating = False

        if not valid:
            await asyncio.to_thread(self._tokens.delete_api_token)
            self.is_authenticated = False
            self.cache.error = INVALID_TOKEN_MESSAGE
            return False

        await self.refresh()
        return True

    async def refresh(self) -> None:
        """Run one refresh cycle, or join the one already in flight."""
        if not self.is_authenticated:
            self.cache.error = NOT_CONFIGURED_MESSAGE
            return

        task = self._refresh_task
        if task is None or task.done():
            task = asyncio.get_running_loop().create_task(self._refresh_cycle())
            self._refresh_task = task
        else:
            logger.debug("Refresh already in flight; joining it")
        await asyncio.shield(task)

    async def _refresh_cycle(self) -> None:
        generation = self._generation
        cache = self.cache
        cache.is_loading = True
        cache.error = None
        try:
            stories = await self._fetch_working_set(cache, generation)
            if stories is None:
                return
            missing = {s.epic_id for s in stories if s.epic_id is not None} - set(cache.epics)
            epics = await self._fetch_epics(sorted(missing))
            if generation != self._generation:
                return
            for epic in epics:
                cache.epics[epic.id] = epic
            cache.stories = self.sort_stories(stories)
            cache.last_refresh_at = time.time()
        except ShortcutApiError as exc:
            if generation == self._generation:
                logger.warning("Refresh failed (%s): %s", exc.code, exc.message)
                cache.error = exc.message
        finally:
            cache.is_loading = False

    async def _fetch_working_set(self, cache: SessionCache, generation: int) -> list[Story] | None:
        """Fetch-if-absent reference data, then the assigned stories.

        Returns ``None`` when a logout happened mid-cycle.
        """
        if cache.current_user is None:
            member = await asyncio.to_thread(self._client.get_current_member)
            if generation != self._generation:
                return None
            cache.current_user = member

        if not cache.workflows:
            workflows = await asyncio.to_thread(self._client.get_workflows)
            if generation != self._generation:
                return None
            cache.workflows = {w.id: w for w in workflows}

        if not cache.teams:
            teams = await asyncio.to_thread(self._client.get_teams)
            if generation != self._generation:
                return None
            cache.teams = {t.id: t for t in teams}

        stories = await asyncio.to_thread(
            self._client.get_my_stories, cache.current_user.mention_name
        )
        if generation != self._generation:
            return None
        return stories

    async def _fetch_epics(self, epic_ids: list[int]) -> list[Epic]:
        if not epic_ids:
            return []

        semaphore = asyncio.Semaphore(self._epic_concurrency)

        async def fetch(epic_id: int) -> Epic:
            async with semaphore:
                return await asyncio.to_thread(self._client.get_epic, epic_id)

        results = await asyncio.gather(*(fetch(i) for i in epic_ids), return_exceptions=True)

        epics: list[Epic] = []
        for epic_id, result in zip(epic_ids, results):
            if isinstance(result, BaseException):
                logger.warning("Skipping epic %d: %s", epic_id, result)
                continue
            epics.append(result)
        return epics

    async def logout(self) -> None:
        self._reset_session()
        self.is_authenticated = False
        self._authenticating = False
        await asyncio.to_thread(self._tokens.delete_api_token)

    def _reset_session(self) -> None:
        self._generation += 1
        self._refresh_task = None
        self.cache = SessionCache()

    def sort_stories(self, stories: list[Story]) -> list[Story]:
        """Started, unstarted, backlog, then everything else; higher position first."""

        def key(story: Story) -> tuple[int, int]:
            state = self.workflow_state_for(story)
            if state is None:
                return (UNRESOLVED_PRIORITY, 0)
            return (state_priority(state.type), -state.position)

        return sorted(stories, key=key)

    def workflow_for(self, story: Story) -> Workflow | None:
        return self.cache.workflows.get(story.workflow_id)

    def workflow_state_for(self, story: Story) -> WorkflowState | None:
        workflow = self.workflow_for(story)
        if workflow is None:
            return None
        return workflow.state(story.workflow_state_id)

    def team_for(self, story: Story) -> Team | None:
        if story.group_id is None:
            return None
        return self.cache.teams.get(story.group_id)

    def epic_for(self, story: Story) -> Epic | None:
        if story.epic_id is None:
            return None
        return self.cache.epics.get(story.epic_id)

    def get_health(self) -> dict[str, Any]:
        cache = self.cache
        return {
            "state": self.state.value,
            "isAuthenticated": self.is_authenticated,
            "isLoading": cache.is_loading,
            "error": cache.error,
            "mentionName": cache.current_user.mention_name if cache.current_user else None,
            "storyCount": len(cache.stories),
            "workflowCount": len(cache.workflows),
            "teamCount": len(cache.teams),
            "epicCount": len(cache.epics),
            "lastRefreshAt": cache.last_refresh_at,
        }
