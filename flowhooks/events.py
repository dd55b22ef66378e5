"""Lifecycle event vocabulary and event/method name transforms."""

from __future__ import annotations

import re
from enum import Enum


class LifecycleEvent(str, Enum):
    PRE_LAUNCH = "pre-launch"
    POST_WORKTREE = "post-worktree"
    PRE_RESEARCH = "pre-research"
    POST_RESEARCH = "post-research"
    PRE_CLAUDE_MD = "pre-claude-md"
    POST_CLAUDE_MD = "post-claude-md"
    SESSION_STARTED = "session-started"
    SESSION_MESSAGE = "session-message"
    SESSION_COMPLETED = "session-completed"
    SESSION_FAILED = "session-failed"
    PRE_PR = "pre-pr"
    PR_CREATED = "pr-created"
    PR_STATUS_CHANGED = "pr-status-changed"
    PR_READY_TO_MERGE = "pr-ready-to-merge"
    PR_MERGED = "pr-merged"
    PR_CHECKS_FAILED = "pr-checks-failed"


KNOWN_EVENTS: frozenset[str] = frozenset(event.value for event in LifecycleEvent)

# onPreClaudeMd
CAMEL_METHOD_PATTERN = re.compile(r"^on(?:[A-Z][a-z0-9]*)+$")
# on_pre_claude_md
SNAKE_METHOD_PATTERN = re.compile(r"^on(?:_[a-z0-9]+)+$")


def event_value(event: str | LifecycleEvent) -> str:
    return event.value if isinstance(event, LifecycleEvent) else str(event)


def event_to_method_name(event: str | LifecycleEvent) -> str:
    """Map ``pre-claude-md`` to ``onPreClaudeMd``."""
    segments = event_value(event).split("-")
    return "on" + "".join(segment[:1].upper() + segment[1:] for segment in segments)


def event_to_snake_method_name(event: str | LifecycleEvent) -> str:
    """Map ``pre-claude-md`` to the Python-style alias ``on_pre_claude_md``."""
    return "on_" + event_value(event).replace("-", "_")


def handler_names_for(event: str | LifecycleEvent) -> tuple[str, str]:
    return event_to_method_name(event), event_to_snake_method_name(event)


def is_handler_name(name: str) -> bool:
    return bool(CAMEL_METHOD_PATTERN.match(name) or SNAKE_METHOD_PATTERN.match(name))


def method_name_to_event(name: str) -> str | None:
    """Inverse of :func:`event_to_method_name`; also accepts the snake alias.

    Returns ``None`` when ``name`` does not follow either handler naming form.
    """
    if SNAKE_METHOD_PATTERN.match(name):
        return name[3:].replace("_", "-")
    if CAMEL_METHOD_PATTERN.match(name):
        return "-".join(part.lower() for part in re.findall(r"[A-Z][a-z0-9]*", name[2:]))
    return None
