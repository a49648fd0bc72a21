"""
MCP server exposing the Shortcut story cache and its login/refresh/logout commands.
"""

from __future__ import annotations

import atexit
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from mcp.server.fastmcp import FastMCP

from . import config
from .session import EngineSession

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Build the session once at startup; warm the cache if a token is stored."""
    session = get_session()
    try:
        session.ensure_fresh()
    except Exception as exc:
        logger.warning("Initial refresh failed: %s", exc)
    try:
        yield
    finally:
        _shutdown()


mcp = FastMCP(
    "Shortcut Sync",
    instructions=(
        "Shortcut story tracker for the authenticated member. "
        "Lists the member's assigned, not-done stories ordered by workflow state "
        "(started, unstarted, backlog, other). Call save_token once with a "
        "Shortcut API token; reference data is cached for the session and "
        "stories are re-fetched on every refresh."
    ),
    lifespan=_lifespan,
)

_session: EngineSession | None = None


def get_session() -> EngineSession:
    global _session
    if _session is None:
        _session = EngineSession.create()
    return _session


def _shutdown() -> None:
    global _session
    if _session is not None:
        _session.close()
        _session = None


atexit.register(_shutdown)


@mcp.tool()
def save_token(token: str) -> dict[str, Any]:
    """Store a Shortcut API token after validating it against the API.

    Args:
        token: Shortcut API token. An invalid token is deleted again.

    Returns:
        dict with "saved" (bool) and the current status.
    """
    session = get_session()
    saved = session.save_token(token)
    return {"saved": saved, "status": session.get_status()}


@mcp.tool()
def refresh() -> dict[str, Any]:
    """Re-fetch assigned stories (and any missing reference data) from Shortcut.

    Returns:
        Status dict with {state, isLoading, error, storyCount, lastRefreshAt, ...}.
    """
    return get_session().refresh()


@mcp.tool()
def logout() -> dict[str, Any]:
    """Delete the stored token and clear all cached data."""
    return get_session().logout()


@mcp.tool()
def list_stories() -> dict[str, Any]:
    """List the member's active stories in display order.

    Refreshes first when the cache is empty or idle longer than the threshold.

    Returns:
        dict with "stories" (list of {id, name, kind, blocked, url, state,
        stateType, workflow, team, epic, branchName, checkoutCommand}),
        "totalCount", "mentionName", "isLoading" and "error".
    """
    session = get_session()
    session.ensure_fresh()
    return session.list_stories()


@mcp.tool()
def get_story(id: int) -> dict[str, Any] | None:
    """Retrieve one cached story by its numeric id, or None if not in the list."""
    return get_session().get_story(id)


@mcp.tool()
def get_status() -> dict[str, Any]:
    """Return engine state, cache counts and last API request details."""
    return get_session().get_status()


def main() -> None:
    # stdout carries the MCP stdio protocol.
    logging.basicConfig(
        level=config.LOG_LEVEL,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    mcp.run()
