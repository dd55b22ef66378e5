"""Session completion hook: summarises finished sessions and gates PR creation."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from flowhooks.git import GitError, GitWorkspace

NAME = "session-completion"

RETRYABLE_MARKERS = ("timeout", "timed out", "rate limit", "overloaded", "connection")
COMPLETE_TASK_STATUSES = frozenset({"done", "completed", "review"})
# Unmerged path codes from ``git status --porcelain``.
CONFLICT_CODES = frozenset({"DD", "AU", "UD", "UA", "DU", "AA", "UU"})


def _parse_time(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return None


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def summarize_session(payload: Mapping[str, Any]) -> dict[str, Any]:
    session = _mapping(payload.get("session"))
    task = _mapping(payload.get("task"))
    started = _parse_time(session.get("start_time"))
    ended = _parse_time(session.get("end_time")) or datetime.now(UTC)
    duration_ms = (ended - started).total_seconds() * 1000 if started else None
    messages = session.get("messages") or []
    return {
        "session_id": session.get("session_id") or session.get("id"),
        "task_id": task.get("id"),
        "task_title": task.get("title"),
        "ended_at": ended.isoformat(),
        "duration_ms": duration_ms,
        "message_count": len(messages) if isinstance(messages, list) else 0,
        "worktree": _mapping(payload.get("worktree")).get("path"),
    }


def task_looks_complete(task: Mapping[str, Any], session: Mapping[str, Any]) -> bool:
    if str(task.get("status", "")).lower() in COMPLETE_TASK_STATUSES:
        return True
    return str(session.get("status", "")).lower() == "completed"


class SessionCompletionHook:
    events = ["session-completed", "session-failed", "pre-pr", "pr-created"]
    version = "1.1.0"
    description = "Records session summaries, validates worktrees before a PR and tracks created PRs"
    timeout = 30_000
    store_results = True

    async def on_session_completed(self, context):
        payload = _mapping(context.payload)
        summary = summarize_session(payload)
        summary["outcome"] = "completed"
        context.logger.info("Session %s completed for task %s", summary["session_id"], summary["task_id"])
        return summary

    async def on_session_failed(self, context):
        payload = _mapping(context.payload)
        summary = summarize_session(payload)
        error = str(payload.get("error") or "unknown error")
        summary["outcome"] = "failed"
        summary["error"] = error
        summary["retryable"] = any(marker in error.lower() for marker in RETRYABLE_MARKERS)
        context.logger.warning("Session %s failed for task %s: %s", summary["session_id"], summary["task_id"], error)
        return summary

    def on_pre_pr(self, context):
        """Decide whether a PR can be opened from the session's worktree.

        Runs git, so it is a plain function and executes off the event loop.
        """
        payload = _mapping(context.payload)
        path = _mapping(payload.get("worktree")).get("path")
        git = context.services.get("git") or GitWorkspace()
        errors: list[str] = []
        warnings: list[str] = []
        checks: dict[str, Any] = {}

        if not path:
            errors.append("No worktree path provided for PR creation")
        else:
            try:
                changes = git.status_porcelain(path)
                branch = git.current_branch(path)
            except GitError as exc:
                errors.append(f"Git validation failed for PR creation: {exc}")
            else:
                conflicts = [line[3:] for line in changes if line[:2] in CONFLICT_CODES]
                uncommitted = len(changes) - len(conflicts)
                checks["git"] = {"valid": branch is not None, "branch": branch}
                checks["changes"] = {"uncommitted": uncommitted}
                checks["conflicts"] = {"has_conflicts": bool(conflicts), "files": conflicts}
                if branch is None:
                    errors.append(f"HEAD is detached in {path}; a PR needs a branch")
                if uncommitted:
                    warnings.append(f"{uncommitted} uncommitted change(s) will not be part of the PR")
                if conflicts:
                    warnings.append("Merge conflicts detected - PR may need manual resolution")

        complete = task_looks_complete(_mapping(payload.get("task")), _mapping(payload.get("session")))
        checks["task"] = {"complete": complete}
        if not complete:
            warnings.append("Task may not be fully complete")

        can_create = not errors
        return {
            "validation": {"can_create_pr": can_create, "errors": errors, "warnings": warnings, "checks": checks},
            "can_proceed": can_create,
        }

    async def on_pr_created(self, context):
        payload = _mapping(context.payload)
        pr = _mapping(payload.get("pr"))
        task = _mapping(payload.get("task"))
        if not pr or pr.get("success") is False:
            return {"pr_info": {}, "actions": []}

        actions: list[str] = []
        if task.get("id") is not None:
            actions.append("link-task-to-pr")
        if pr.get("notify_team"):
            actions.append("notify-team")
        if pr.get("cleanup_worktree") and _mapping(payload.get("worktree")).get("path"):
            actions.append("cleanup-worktree")
        context.logger.info("PR %s created for task %s", pr.get("number"), task.get("id"))
        return {
            "pr_info": {
                "number": pr.get("number"),
                "url": pr.get("url"),
                "title": pr.get("title"),
                "task_id": task.get("id"),
            },
            "actions": actions,
        }


HOOK_CLASS = SessionCompletionHook
