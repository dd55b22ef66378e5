"""PR lifecycle hook.

Follows a pull request from creation to merge. The hook never talks to a code
host itself. An optional ``notifier`` service (``notify(event, notification)``)
receives notifications and an optional ``merger`` service
(``merge(pr_number, method=...)`` returning a mapping with ``success``,
``reason`` and ``can_retry``) performs auto-merges. Status transitions, check
failures and post-merge cleanup come back as structured decisions for the
caller to act on.

Payload keys: ``pr`` (``number``, ``url``, ``branch``, ``checks``) or
``pr_number``, ``old_status``/``new_status`` for status changes, and the
optional ``task``, ``worktree`` and ``session`` records.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

NAME = "pr-lifecycle-management"

SIGNIFICANT_STATUSES = frozenset({"ready-to-merge", "merged", "checks-failed"})
FAILED_CONCLUSIONS = frozenset({"failure", "failed", "timed_out", "cancelled", "action_required"})
RETRYABLE_MERGE_REASONS = ("checks-pending", "temporary-network-error", "rate-limit-exceeded", "merge-queue-busy")
DEFAULT_RETRY_DELAY_MS = 60_000

DEFAULT_TEMPLATES: dict[str, dict[str, str]] = {
    "pr-created": {
        "title": "PR Created: #{pr_number}",
        "message": "Pull request #{pr_number} has been created for task {task_id}",
        "priority": "normal",
    },
    "pr-status-changed": {
        "title": "PR #{pr_number}: {new_status}",
        "message": "Pull request #{pr_number} moved from {old_status} to {new_status}",
        "priority": "normal",
    },
    "pr-ready-to-merge": {
        "title": "PR Ready: #{pr_number}",
        "message": "Pull request #{pr_number} is ready to merge (auto-merge {auto_merge})",
        "priority": "normal",
    },
    "pr-merged": {
        "title": "PR Merged: #{pr_number}",
        "message": "Pull request #{pr_number} has been merged",
        "priority": "normal",
    },
    "pr-checks-failed": {
        "title": "PR Checks Failed: #{pr_number}",
        "message": "Pull request #{pr_number} has failing checks: {failed_checks}",
        "priority": "high",
    },
}


class _TemplateValues(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _now() -> str:
    return datetime.now(UTC).isoformat()


def format_notification(template: Mapping[str, Any], data: Mapping[str, Any]) -> dict[str, Any]:
    """Fill ``{placeholder}`` fields; unknown placeholders are left as written."""
    values = _TemplateValues({key: value for key, value in data.items() if isinstance(value, (str, int, float))})
    return {
        "title": str(template.get("title", "")).format_map(values),
        "message": str(template.get("message", "")).format_map(values),
        "priority": template.get("priority", "normal"),
    }


def channels_for(event: str, config: Mapping[str, Any], escalate: str | None = None) -> list[str]:
    channels = ["app"]
    if config.get("enabled", True) is False:
        return channels
    for name, channel in _mapping(config.get("channels")).items():
        channel = _mapping(channel)
        if channel.get("enabled") and event in (channel.get("events") or []) and name not in channels:
            channels.append(name)

    escalation = _mapping(config.get("escalation"))
    if escalate and escalation.get("enabled"):
        for rule in escalation.get("rules") or []:
            rule = _mapping(rule)
            if rule.get("trigger") == escalate:
                channels.extend(name for name in rule.get("channels") or [] if name not in channels)
                break
    return channels


def escalation_level(failed_count: int) -> str:
    if failed_count > 3:
        return "critical"
    if failed_count > 1:
        return "15min"
    return "5min"


def should_retry_merge(result: Mapping[str, Any]) -> bool:
    if result.get("can_retry") is False:
        return False
    for phase in result.get("phases") or []:
        phase = _mapping(phase)
        if phase.get("phase") == "validation" and phase.get("status") == "failed":
            return False
        if phase.get("phase") == "rollback-preparation" and phase.get("status") == "completed":
            return False
    reason = str(result.get("reason") or "").lower()
    return any(marker in reason for marker in RETRYABLE_MERGE_REASONS)


def plan_post_merge_cleanup(
    options: Mapping[str, Any],
    task: Mapping[str, Any],
    worktree: Mapping[str, Any],
    session: Mapping[str, Any],
) -> list[dict[str, Any]]:
    if options.get("cleanup_after_merge", True) is False:
        return []
    steps: list[dict[str, Any]] = []
    if worktree.get("path") and options.get("cleanup_worktree", True) is not False:
        steps.append({"action": "remove-worktree", "path": worktree["path"], "branch": worktree.get("branch")})
    if task.get("id") is not None and options.get("update_task_status", True) is not False:
        steps.append({"action": "set-task-status", "task_id": task["id"], "status": "done"})
    session_id = session.get("session_id") or session.get("id")
    if session_id and options.get("archive_session", True) is not False:
        steps.append({"action": "archive-session", "session_id": session_id})
    return steps


def _pr_number(payload: Mapping[str, Any]) -> Any:
    number = payload.get("pr_number")
    if number is None:
        number = _mapping(payload.get("pr")).get("number")
    if number is None:
        raise ValueError("No PR number provided")
    return number


class PRLifecycleManagementHook:
    events = ["pr-created", "pr-status-changed", "pr-ready-to-merge", "pr-merged", "pr-checks-failed"]
    version = "2.0.0"
    description = "Tracks PRs from creation to merge, including auto-merge and post-merge cleanup decisions"
    timeout = 60_000
    store_results = True

    def on_pr_created(self, context):
        payload = _mapping(context.payload)
        number = _pr_number(payload)
        pr = _mapping(payload.get("pr"))
        task = _mapping(payload.get("task"))
        worktree = _mapping(payload.get("worktree"))
        options = context.hook_config

        monitoring = {
            "task_id": task.get("id"),
            "worktree": worktree.get("name") or worktree.get("path"),
            "auto_merge": bool(options.get("auto_merge", False)),
            "required_checks": list(options.get("required_checks") or []),
            "cleanup_after_merge": options.get("cleanup_after_merge", True) is not False,
        }
        notification = self._notify(
            context,
            "pr-created",
            {"pr_number": number, "task_id": task.get("id"), "pr_url": pr.get("url"), "branch": pr.get("branch") or worktree.get("branch")},
        )
        context.logger.info("Tracking PR #%s for task %s", number, task.get("id"))
        return {"pr_number": number, "action": "monitor", "monitoring": monitoring, "notification": notification}

    def on_pr_status_changed(self, context):
        payload = _mapping(context.payload)
        number = _pr_number(payload)
        old_status = payload.get("old_status")
        new_status = payload.get("new_status")
        if not new_status:
            raise ValueError(f"No new status provided for PR #{number}")

        context.logger.info("PR #%s status changed: %s -> %s", number, old_status, new_status)
        result: dict[str, Any] = {
            "pr_number": number,
            "status_change": {"from": old_status, "to": new_status},
            "timestamp": _now(),
            "notification": None,
            "follow_up": None,
        }
        if new_status in SIGNIFICANT_STATUSES:
            result["notification"] = self._notify(
                context,
                "pr-status-changed",
                {"pr_number": number, "old_status": str(old_status), "new_status": new_status},
            )

        follow_up = {
            "ready-to-merge": self._ready_to_merge,
            "merged": self._merged,
            "checks-failed": self._checks_failed,
        }.get(new_status)
        if follow_up is not None:
            result["follow_up"] = follow_up(context, number, payload)
        return result

    def on_pr_ready_to_merge(self, context):
        payload = _mapping(context.payload)
        return self._ready_to_merge(context, _pr_number(payload), payload)

    def on_pr_merged(self, context):
        payload = _mapping(context.payload)
        return self._merged(context, _pr_number(payload), payload)

    def on_pr_checks_failed(self, context):
        payload = _mapping(context.payload)
        return self._checks_failed(context, _pr_number(payload), payload)

    def _ready_to_merge(self, context, number, payload) -> dict[str, Any]:
        options = context.hook_config
        auto_merge = bool(options.get("auto_merge", False))
        notification = self._notify(
            context,
            "pr-ready-to-merge",
            {"pr_number": number, "auto_merge": "enabled" if auto_merge else "disabled"},
        )
        result: dict[str, Any] = {"pr_number": number, "notification": notification}
        if not auto_merge:
            result["action"] = "manual-merge-required"
            return result

        merger = context.services.get("merger")
        if merger is None:
            context.logger.warning("Auto-merge is enabled for PR #%s but no merger service is available", number)
            result.update(action="manual-merge-required", reason="no merger service available")
            return result

        method = options.get("merge_method", "squash")
        outcome = _mapping(merger.merge(number, method=method))
        if outcome.get("success"):
            context.logger.info("Auto-merged PR #%s using %s", number, method)
            result.update(action="auto-merged", merge_method=method, merge=dict(outcome))
            return result

        reason = str(outcome.get("reason") or "unknown reason")
        retry = should_retry_merge(outcome)
        context.logger.error("Auto-merge failed for PR #%s: %s", number, reason)
        result.update(
            action="auto-merge-failed",
            reason=reason,
            retry=retry,
            retry_delay_ms=options.get("retry_delay_ms", DEFAULT_RETRY_DELAY_MS) if retry else None,
        )
        return result

    def _merged(self, context, number, payload) -> dict[str, Any]:
        task = _mapping(payload.get("task"))
        notification = self._notify(context, "pr-merged", {"pr_number": number, "task_id": task.get("id")})
        cleanup = plan_post_merge_cleanup(
            context.hook_config,
            task,
            _mapping(payload.get("worktree")),
            _mapping(payload.get("session")),
        )
        context.logger.info("PR #%s merged; %s cleanup step(s) planned", number, len(cleanup))
        return {"pr_number": number, "action": "merged", "cleanup": cleanup, "timestamp": _now(), "notification": notification}

    def _checks_failed(self, context, number, payload) -> dict[str, Any]:
        pr = _mapping(payload.get("pr"))
        task = _mapping(payload.get("task"))
        checks = [check for check in pr.get("checks") or [] if isinstance(check, Mapping)]
        failed = [
            check
            for check in checks
            if str(check.get("conclusion") or check.get("status") or "").lower() in FAILED_CONCLUSIONS
        ]
        names = [str(check.get("name", "unknown")) for check in failed]
        for check in failed:
            context.logger.warning("PR #%s check %s failed: %s", number, check.get("name"), check.get("conclusion") or "failed")

        escalate = escalation_level(len(failed))
        notification = self._notify(
            context,
            "pr-checks-failed",
            {"pr_number": number, "task_id": task.get("id"), "failed_checks": ", ".join(names), "failed_check_count": len(failed)},
            escalate=escalate,
        )
        required = set(context.hook_config.get("required_checks") or [])
        blocking = [name for name in names if name in required] if required else names
        return {
            "pr_number": number,
            "action": "checks-failed",
            "failed_checks": names,
            "blocking_checks": blocking,
            "total_checks": len(checks),
            "escalation": escalate,
            "notification": notification,
        }

    def _notify(self, context, event: str, data: Mapping[str, Any], escalate: str | None = None) -> dict[str, Any]:
        config = _mapping(context.hook_config.get("notifications"))
        templates = {**DEFAULT_TEMPLATES, **_mapping(config.get("templates"))}
        template = _mapping(templates.get(event)) or {"title": f"flowhooks: {event}", "message": f"Event: {event}"}
        notification = format_notification(template, data)
        notification["channels"] = channels_for(event, config, escalate)
        notification["delivered"] = False

        notifier = context.services.get("notifier")
        if notifier is None:
            return notification
        try:
            notifier.notify(event, dict(notification))
        except Exception as exc:  # noqa: BLE001 - notifications are best effort
            context.logger.warning("Failed to send %s notification for PR #%s: %s", event, data.get("pr_number"), exc)
            notification["error"] = str(exc)
        else:
            notification["delivered"] = True
        return notification


HOOK_CLASS = PRLifecycleManagementHook
