"""Pre-launch validation hook.

Runs independent checks before a session is launched for a task. Every check
records its own findings into shared ``errors``/``warnings`` lists instead of
failing fast, and the hook returns one structured payload:

    {"validation": {"success", "errors", "warnings", "checks", "duration_ms"}, "passed": bool}

Expected payload keys (all optional): ``task`` (with ``id`` and
``dependencies``), ``tasks`` (all known tasks with ``id`` and ``status``),
``worktree`` (``path`` and ``branch``), ``project_root`` and ``config``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from flowhooks.git import GitError, GitWorkspace

NAME = "pre-launch-validation"

DONE_STATUSES = frozenset({"done", "completed", "cancelled"})


class _Findings:
    def __init__(self) -> None:
        self.errors: list[str] = []
        self.warnings: list[str] = []
        self.checks: dict[str, dict[str, Any]] = {}

    def record(self, name: str, errors: list[str], warnings: list[str], skipped: str | None = None) -> None:
        self.errors.extend(errors)
        self.warnings.extend(warnings)
        if skipped:
            status = "skipped"
        elif errors:
            status = "failed"
        elif warnings:
            status = "warning"
        else:
            status = "passed"
        entry: dict[str, Any] = {"status": status, "errors": errors, "warnings": warnings}
        if skipped:
            entry["reason"] = skipped
        self.checks[name] = entry


class PreLaunchValidationHook:
    events = ["pre-launch"]
    version = "1.0.0"
    description = "Validates git state, task dependencies, worktree conflicts and configuration before launch"
    timeout = 60_000

    def on_pre_launch(self, context):
        payload = context.payload if isinstance(context.payload, Mapping) else {}
        options = context.hook_config
        git = context.services.get("git") or GitWorkspace()
        findings = _Findings()

        checks = [
            ("git_status", self.check_git_status),
            ("dependencies", self.check_dependencies),
            ("worktree", self.check_worktree_conflicts),
            ("configuration", self.check_configuration),
        ]
        for name, check in checks:
            try:
                check(payload, options, git, findings)
            except Exception as exc:  # noqa: BLE001 - a broken check is a finding, not a crash
                context.logger.warning("Pre-launch check %s crashed: %s", name, exc)
                findings.record(name, [f"{name} check failed: {exc}"], [])

        passed = not findings.errors
        return {
            "validation": {
                "success": passed,
                "errors": findings.errors,
                "warnings": findings.warnings,
                "checks": findings.checks,
                "duration_ms": context.elapsed_ms(),
            },
            "passed": passed,
        }

    @staticmethod
    def _workspace_path(payload: Mapping[str, Any]) -> str | None:
        worktree = payload.get("worktree") or {}
        if isinstance(worktree, Mapping) and worktree.get("path") and Path(worktree["path"]).exists():
            return str(worktree["path"])
        root = payload.get("project_root")
        return str(root) if root else None

    def check_git_status(self, payload, options, git, findings: _Findings) -> None:
        path = self._workspace_path(payload)
        if not path:
            findings.record("git_status", [], [], skipped="no-workspace")
            return
        try:
            changes = git.status_porcelain(path)
            branch = git.current_branch(path)
        except GitError as exc:
            findings.record("git_status", [], [f"Could not read git status for {path}: {exc}"])
            return

        errors: list[str] = []
        warnings: list[str] = []
        if branch is None:
            warnings.append(f"HEAD is detached in {path}; the session will not be on a branch")
        if changes:
            message = f"{len(changes)} uncommitted change(s) in {path}"
            if options.get("require_clean_git", False):
                errors.append(message)
            else:
                warnings.append(message)
        findings.record("git_status", errors, warnings)

    def check_dependencies(self, payload, options, git, findings: _Findings) -> None:
        task = payload.get("task")
        if not options.get("check_dependencies", True) or not isinstance(task, Mapping):
            findings.record("dependencies", [], [], skipped="disabled" if isinstance(task, Mapping) else "no-task")
            return

        known = {str(item.get("id")): item for item in payload.get("tasks") or [] if isinstance(item, Mapping)}
        errors: list[str] = []
        warnings: list[str] = []
        task_id = task.get("id")
        for dependency in task.get("dependencies") or []:
            dep = known.get(str(dependency))
            if dep is None:
                warnings.append(f"Task {task_id} depends on unknown task {dependency}")
                continue
            status = str(dep.get("status", "pending")).lower()
            if status not in DONE_STATUSES:
                errors.append(f"Task {task_id} depends on task {dependency} which is still {status}")
        findings.record("dependencies", errors, warnings)

    def check_worktree_conflicts(self, payload, options, git, findings: _Findings) -> None:
        worktree = payload.get("worktree")
        root = payload.get("project_root")
        if not options.get("check_worktree", True) or not isinstance(worktree, Mapping) or not root:
            findings.record("worktree", [], [], skipped="no-worktree")
            return

        target = Path(str(worktree.get("path") or "")).resolve() if worktree.get("path") else None
        branch = worktree.get("branch")
        try:
            existing = git.list_worktrees(root)
        except GitError as exc:
            findings.record("worktree", [], [f"Could not list worktrees: {exc}"])
            return

        errors: list[str] = []
        warnings: list[str] = []
        registered = {Path(str(item["path"])).resolve() for item in existing if item.get("path")}
        for item in existing:
            other = Path(str(item["path"])).resolve()
            if branch and item.get("branch") == branch and other != target:
                errors.append(f"Branch {branch} is already checked out in {other}")
        if target is not None and target.exists() and target not in registered:
            warnings.append(f"Worktree path {target} exists but is not a registered git worktree")
        findings.record("worktree", errors, warnings)

    def check_configuration(self, payload, options, git, findings: _Findings) -> None:
        config = payload.get("config") or {}
        errors: list[str] = []
        warnings: list[str] = []
        if not isinstance(config, Mapping):
            findings.record("configuration", ["Launch configuration must be a mapping"], [])
            return

        max_turns = config.get("max_turns")
        if max_turns is not None and (not isinstance(max_turns, int) or isinstance(max_turns, bool) or max_turns <= 0):
            errors.append(f"max_turns must be a positive integer, got {max_turns!r}")
        model = config.get("model")
        if model is not None and (not isinstance(model, str) or not model.strip()):
            errors.append("model must be a non-empty string")
        for name in options.get("required_env") or []:
            if not os.environ.get(name):
                warnings.append(f"Environment variable {name} is not set")
        findings.record("configuration", errors, warnings)


HOOK_CLASS = PreLaunchValidationHook
