"""
Value types decoded from Shortcut API v3 payloads.

Payloads use snake_case keys that map one-to-one onto the dataclass fields.
Decoding raises KeyError/TypeError/ValueError when a payload does not have the
expected shape; unknown keys are ignored.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

_BRANCH_SLUG_STRIP = re.compile(r"[^a-z0-9-]")
BRANCH_SLUG_MAX_LENGTH = 50
DEFAULT_STORY_TYPE = "feature"


def _expect_object(data: Any, what: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise TypeError(f"{what}: expected object, got {type(data).__name__}")
    return data


def _field(data: dict[str, Any], key: str, kind: type, *, optional: bool = False) -> Any:
    value = data.get(key)
    if value is None:
        if optional:
            return None
        raise KeyError(key)
    # bool is an int subclass; reject it where a number is expected.
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise TypeError(f"{key}: expected {kind.__name__}, got {type(value).__name__}")
    return value


def _list_field(data: dict[str, Any], key: str) -> list[Any]:
    value = data.get(key)
    if not isinstance(value, list):
        raise TypeError(f"{key}: expected list, got {type(value).__name__}")
    return value


@dataclass(frozen=True)
class MemberInfo:
    mention_name: str

    @classmethod
    def from_api(cls, data: Any) -> MemberInfo:
        data = _expect_object(data, "member")
        return cls(mention_name=_field(data, "mention_name", str))


@dataclass(frozen=True)
class WorkflowState:
    id: int
    name: str
    type: str
    position: int

    @classmethod
    def from_api(cls, data: Any) -> WorkflowState:
        data = _expect_object(data, "workflow state")
        return cls(
            id=_field(data, "id", int),
            name=_field(data, "name", str),
            type=_field(data, "type", str),
            position=_field(data, "position", int),
        )


@dataclass(frozen=True)
class Workflow:
    id: int
    name: str
    states: tuple[WorkflowState, ...] = ()

    @classmethod
    def from_api(cls, data: Any) -> Workflow:
        data = _expect_object(data, "workflow")
        return cls(
            id=_field(data, "id", int),
            name=_field(data, "name", str),
            states=tuple(WorkflowState.from_api(s) for s in _list_field(data, "states")),
        )

    def state(self, state_id: int) -> WorkflowState | None:
        for state in self.states:
            if state.id == state_id:
                return state
        return None


@dataclass(frozen=True)
class Team:
    id: str
    name: str

    @classmethod
    def from_api(cls, data: Any) -> Team:
        data = _expect_object(data, "team")
        return cls(id=_field(data, "id", str), name=_field(data, "name", str))


@dataclass(frozen=True)
class Epic:
    id: int
    name: str

    @classmethod
    def from_api(cls, data: Any) -> Epic:
        data = _expect_object(data, "epic")
        return cls(id=_field(data, "id", int), name=_field(data, "name", str))


@dataclass(frozen=True)
class Story:
    """A story assigned to the current member.

    ``workflow_state_id`` is not guaranteed to exist in the referenced
    workflow; lookups must tolerate a missing match.
    """

    id: int
    name: str
    app_url: str
    workflow_id: int
    workflow_state_id: int
    story_type: str | None = None
    blocked: bool | None = None
    group_id: str | None = None
    epic_id: int | None = None

    @classmethod
    def from_api(cls, data: Any) -> Story:
        data = _expect_object(data, "story")
        return cls(
            id=_field(data, "id", int),
            name=_field(data, "name", str),
            app_url=_field(data, "app_url", str),
            workflow_id=_field(data, "workflow_id", int),
            workflow_state_id=_field(data, "workflow_state_id", int),
            story_type=_field(data, "story_type", str, optional=True),
            blocked=_field(data, "blocked", bool, optional=True),
            group_id=_field(data, "group_id", str, optional=True),
            epic_id=_field(data, "epic_id", int, optional=True),
        )

    @property
    def kind(self) -> str:
        return self.story_type or DEFAULT_STORY_TYPE

    @property
    def is_blocked(self) -> bool:
        return self.blocked is True

    def branch_name(self, mention_name: str | None) -> str:
        """Git branch name in Shortcut's ``<owner>/sc-<id>/<slug>`` convention."""
        slug = self.name.lower().replace(" ", "-")
        slug = _BRANCH_SLUG_STRIP.sub("", slug)[:BRANCH_SLUG_MAX_LENGTH]
        return f"{mention_name or 'user'}/sc-{self.id}/{slug}"

    def checkout_command(self, mention_name: str | None) -> str:
        return f"git checkout -b {self.branch_name(mention_name)}"


@dataclass(frozen=True)
class StorySearchResults:
    data: tuple[Story, ...] = ()

    @classmethod
    def from_api(cls, data: Any) -> StorySearchResults:
        data = _expect_object(data, "story search results")
        return cls(data=tuple(Story.from_api(s) for s in _list_field(data, "data")))


def decode_list(payload: Any, item_type: Any) -> list[Any]:
    """Decode a top-level JSON array with ``item_type.from_api``."""
    if not isinstance(payload, list):
        raise TypeError(f"expected list, got {type(payload).__name__}")
    return [item_type.from_api(item) for item in payload]
