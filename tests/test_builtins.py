import asyncio
from pathlib import Path

import pytest

from flowhooks.builtins.pr_lifecycle_management import PRLifecycleManagementHook, channels_for, should_retry_merge
from flowhooks.builtins.pre_launch_validation import PreLaunchValidationHook
from flowhooks.builtins.research_integration import ResearchIntegrationHook, research_cache_key
from flowhooks.builtins.session_completion import SessionCompletionHook
from flowhooks.config import DiscoveryConfig, FlowHooksConfig, SettingsConfig
from flowhooks.context import ContextFactory
from flowhooks.git import GitError
from flowhooks.manager import HookManager
from flowhooks.validator import HookValidator


class FakeGit:
    def __init__(self, changes=None, worktrees=None, fail_status: Exception | None = None, branch: str | None = "main") -> None:
        self.changes = changes or []
        self.worktrees = worktrees or []
        self.fail_status = fail_status
        self.branch = branch

    def status_porcelain(self, path):
        if self.fail_status is not None:
            raise self.fail_status
        return list(self.changes)

    def current_branch(self, path):
        return self.branch

    def list_worktrees(self, path):
        return list(self.worktrees)


def _run_pre_launch(payload, git, hook_config=None):
    factory = ContextFactory()
    context = factory.for_hook(factory.build("pre-launch", payload, {"git": git}), "pre-launch-validation", hook_config)
    return PreLaunchValidationHook().on_pre_launch(context)


def _payload(tmp_path: Path, **overrides):
    payload = {
        "project_root": str(tmp_path),
        "task": {"id": "3", "dependencies": ["1", "2"]},
        "tasks": [{"id": "1", "status": "done"}, {"id": "2", "status": "done"}],
        "worktree": {"path": str(tmp_path / "worktrees" / "task-3"), "branch": "task-3"},
        "config": {"max_turns": 20, "model": "sonnet"},
    }
    payload.update(overrides)
    return payload


def test_builtin_hooks_pass_strict_validation() -> None:
    validator = HookValidator(strict=True)

    for hook in (PreLaunchValidationHook(), SessionCompletionHook(), PRLifecycleManagementHook(), ResearchIntegrationHook()):
        result = validator.validate(hook)
        assert result.valid is True, result.errors
        assert result.errors == []


def test_pre_launch_passes_for_clean_workspace(tmp_path: Path) -> None:
    result = _run_pre_launch(_payload(tmp_path), FakeGit(worktrees=[{"path": str(tmp_path), "branch": "main"}]))

    assert result["passed"] is True
    validation = result["validation"]
    assert validation["success"] is True
    assert validation["errors"] == []
    assert set(validation["checks"]) == {"git_status", "dependencies", "worktree", "configuration"}
    assert validation["checks"]["dependencies"]["status"] == "passed"


def test_unmet_dependencies_fail_validation(tmp_path: Path) -> None:
    payload = _payload(tmp_path, tasks=[{"id": "1", "status": "done"}, {"id": "2", "status": "in-progress"}])

    result = _run_pre_launch(payload, FakeGit())

    assert result["passed"] is False
    assert any("task 2" in error and "in-progress" in error for error in result["validation"]["errors"])


def test_unknown_dependency_is_a_warning(tmp_path: Path) -> None:
    payload = _payload(tmp_path, tasks=[{"id": "1", "status": "done"}])

    result = _run_pre_launch(payload, FakeGit())

    assert result["passed"] is True
    assert any("unknown task 2" in warning for warning in result["validation"]["warnings"])


def test_dirty_git_is_warning_unless_clean_tree_required(tmp_path: Path) -> None:
    git = FakeGit(changes=[" M src/app.py"])

    relaxed = _run_pre_launch(_payload(tmp_path), git)
    assert relaxed["passed"] is True
    assert relaxed["validation"]["checks"]["git_status"]["status"] == "warning"

    strict = _run_pre_launch(_payload(tmp_path), git, {"require_clean_git": True})
    assert strict["passed"] is False
    assert strict["validation"]["checks"]["git_status"]["status"] == "failed"


def test_branch_checked_out_elsewhere_is_a_conflict(tmp_path: Path) -> None:
    git = FakeGit(
        worktrees=[
            {"path": str(tmp_path), "branch": "main"},
            {"path": str(tmp_path / "other"), "branch": "task-3"},
        ]
    )

    result = _run_pre_launch(_payload(tmp_path), git)

    assert result["passed"] is False
    assert any("task-3" in error for error in result["validation"]["errors"])


def test_checks_keep_running_after_one_crashes(tmp_path: Path) -> None:
    payload = _payload(tmp_path, config={"max_turns": 0})

    result = _run_pre_launch(payload, FakeGit(fail_status=RuntimeError("disk on fire")))

    errors = result["validation"]["errors"]
    assert result["passed"] is False
    assert any("git_status check failed: disk on fire" in error for error in errors)
    assert any("max_turns" in error for error in errors)
    assert result["validation"]["checks"]["dependencies"]["status"] == "passed"


def test_git_errors_degrade_to_warnings(tmp_path: Path) -> None:
    result = _run_pre_launch(_payload(tmp_path), FakeGit(fail_status=GitError("not a git repository")))

    assert result["passed"] is True
    assert any("not a git repository" in warning for warning in result["validation"]["warnings"])


def test_required_env_is_checked(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("FLOWHOOKS_TEST_TOKEN", raising=False)

    result = _run_pre_launch(_payload(tmp_path), FakeGit(), {"required_env": ["FLOWHOOKS_TEST_TOKEN"]})

    assert any("FLOWHOOKS_TEST_TOKEN" in warning for warning in result["validation"]["warnings"])


def test_pre_launch_runs_through_manager(tmp_path: Path) -> None:
    config = FlowHooksConfig(settings=SettingsConfig(path="hooks.yaml"))
    manager = HookManager(config, root=tmp_path)
    manager.initialize()

    report = manager.emit("pre-launch", _payload(tmp_path), services={"git": FakeGit()})

    outcome = report.outcome_for("pre-launch-validation")
    assert outcome.success is True
    assert outcome.data["passed"] is True
    assert report.executed_names == ["pre-launch-validation"]


class MemoryStore:
    def __init__(self) -> None:
        self.records = []

    def store_hook_data(self, hook_name, event, data):
        self.records.append((hook_name, event, data))
        return len(self.records)

    def get_hook_history(self, hook_name, event=None, limit=50):
        return []


def test_session_completion_summaries_are_stored(tmp_path: Path) -> None:
    store = MemoryStore()
    config = FlowHooksConfig(
        discovery=DiscoveryConfig(builtin_package="flowhooks.builtins"),
        settings=SettingsConfig(path="hooks.yaml"),
    )
    manager = HookManager(config, root=tmp_path, storage=store)
    manager.initialize()
    payload = {
        "session": {
            "session_id": "s-1",
            "start_time": "2026-01-01T10:00:00Z",
            "end_time": "2026-01-01T10:00:30Z",
            "messages": [{}, {}, {}],
        },
        "task": {"id": "9", "title": "Ship it"},
        "error": "Rate limit exceeded",
    }

    async def scenario():
        completed = await manager.dispatch("session-completed", payload)
        failed = await manager.dispatch("session-failed", payload)
        return completed, failed

    completed, failed = asyncio.run(scenario())

    summary = completed.outcome_for("session-completion").data
    assert summary["duration_ms"] == 30_000
    assert summary["message_count"] == 3
    assert summary["outcome"] == "completed"
    assert failed.outcome_for("session-completion").data["retryable"] is True
    assert [(name, event) for name, event, _ in store.records] == [
        ("session-completion", "session-completed"),
        ("session-completion", "session-failed"),
    ]


def _context_for(hook_name, event, payload, services=None, hook_config=None):
    factory = ContextFactory()
    return factory.for_hook(factory.build(event, payload, services), hook_name, hook_config)


def test_detached_head_is_a_pre_launch_warning(tmp_path: Path) -> None:
    result = _run_pre_launch(_payload(tmp_path), FakeGit(branch=None))

    assert result["passed"] is True
    assert result["validation"]["checks"]["git_status"]["status"] == "warning"
    assert any("detached" in warning for warning in result["validation"]["warnings"])
    assert result["validation"]["duration_ms"] >= 0


def test_pre_pr_allows_clean_branch_with_finished_task(tmp_path: Path) -> None:
    payload = {"worktree": {"path": str(tmp_path)}, "task": {"id": "5", "status": "done"}}
    context = _context_for("session-completion", "pre-pr", payload, {"git": FakeGit(branch="task-5")})

    result = SessionCompletionHook().on_pre_pr(context)

    assert result["can_proceed"] is True
    assert result["validation"]["errors"] == []
    assert result["validation"]["checks"]["git"] == {"valid": True, "branch": "task-5"}
    assert result["validation"]["checks"]["task"]["complete"] is True


def test_pre_pr_blocks_detached_head_and_flags_conflicts(tmp_path: Path) -> None:
    git = FakeGit(changes=["UU src/app.py", " M README.md"], branch=None)
    payload = {"worktree": {"path": str(tmp_path)}, "task": {"id": "5", "status": "in-progress"}}
    context = _context_for("session-completion", "pre-pr", payload, {"git": git})

    result = SessionCompletionHook().on_pre_pr(context)
    validation = result["validation"]

    assert result["can_proceed"] is False
    assert any("detached" in error for error in validation["errors"])
    assert validation["checks"]["conflicts"] == {"has_conflicts": True, "files": ["src/app.py"]}
    assert validation["checks"]["changes"]["uncommitted"] == 1
    assert "Task may not be fully complete" in validation["warnings"]


def test_session_pr_created_lists_follow_up_actions(tmp_path: Path) -> None:
    payload = {
        "pr": {"number": 42, "url": "https://example.com/pr/42", "title": "Task 5", "notify_team": True, "cleanup_worktree": True},
        "task": {"id": "5"},
        "worktree": {"path": str(tmp_path)},
    }
    context = _context_for("session-completion", "pr-created", payload)

    result = asyncio.run(SessionCompletionHook().on_pr_created(context))

    assert result["pr_info"]["number"] == 42
    assert result["actions"] == ["link-task-to-pr", "notify-team", "cleanup-worktree"]

    failed = _context_for("session-completion", "pr-created", {"pr": {"number": 43, "success": False}})
    assert asyncio.run(SessionCompletionHook().on_pr_created(failed)) == {"pr_info": {}, "actions": []}


class FakeNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.sent = []
        self.fail = fail

    def notify(self, event, notification):
        if self.fail:
            raise ConnectionError("notifier offline")
        self.sent.append((event, notification))


class FakeMerger:
    def __init__(self, result) -> None:
        self.result = result
        self.calls = []

    def merge(self, pr_number, method="squash"):
        self.calls.append((pr_number, method))
        return self.result


def test_pr_created_starts_monitoring_and_notifies() -> None:
    notifier = FakeNotifier()
    payload = {"pr": {"number": 7, "url": "https://example.com/pr/7", "branch": "task-3"}, "task": {"id": "3"}}
    context = _context_for("pr-lifecycle-management", "pr-created", payload, {"notifier": notifier}, {"auto_merge": True})

    result = PRLifecycleManagementHook().on_pr_created(context)

    assert result["action"] == "monitor"
    assert result["monitoring"]["auto_merge"] is True
    assert result["notification"]["delivered"] is True
    assert notifier.sent[0][0] == "pr-created"
    assert notifier.sent[0][1]["message"] == "Pull request #7 has been created for task 3"


def test_pr_created_without_number_is_rejected() -> None:
    context = _context_for("pr-lifecycle-management", "pr-created", {"pr": {}})

    with pytest.raises(ValueError, match="No PR number"):
        PRLifecycleManagementHook().on_pr_created(context)


def test_status_change_to_ready_auto_merges() -> None:
    merger = FakeMerger({"success": True})
    payload = {"pr_number": 7, "old_status": "checks-pending", "new_status": "ready-to-merge"}
    context = _context_for(
        "pr-lifecycle-management",
        "pr-status-changed",
        payload,
        {"merger": merger},
        {"auto_merge": True, "merge_method": "rebase"},
    )

    result = PRLifecycleManagementHook().on_pr_status_changed(context)

    assert result["status_change"] == {"from": "checks-pending", "to": "ready-to-merge"}
    assert result["notification"]["delivered"] is False
    assert result["follow_up"]["action"] == "auto-merged"
    assert merger.calls == [(7, "rebase")]


def test_ready_to_merge_without_auto_merge_needs_a_human() -> None:
    context = _context_for("pr-lifecycle-management", "pr-ready-to-merge", {"pr_number": 8})

    result = PRLifecycleManagementHook().on_pr_ready_to_merge(context)

    assert result["action"] == "manual-merge-required"


def test_failed_auto_merge_decides_on_retry() -> None:
    merger = FakeMerger({"success": False, "reason": "Merge queue busy: merge-queue-busy"})
    context = _context_for("pr-lifecycle-management", "pr-ready-to-merge", {"pr_number": 9}, {"merger": merger}, {"auto_merge": True})

    result = PRLifecycleManagementHook().on_pr_ready_to_merge(context)

    assert result["action"] == "auto-merge-failed"
    assert result["retry"] is True
    assert result["retry_delay_ms"] == 60_000
    assert should_retry_merge({"reason": "merge-queue-busy", "phases": [{"phase": "validation", "status": "failed"}]}) is False
    assert should_retry_merge({"reason": "branch protection"}) is False


def test_pr_merged_plans_cleanup_and_survives_notifier_errors() -> None:
    payload = {
        "pr_number": 10,
        "task": {"id": "3"},
        "worktree": {"path": "/work/task-3", "branch": "task-3"},
        "session": {"session_id": "s-1"},
    }
    context = _context_for("pr-lifecycle-management", "pr-merged", payload, {"notifier": FakeNotifier(fail=True)})

    result = PRLifecycleManagementHook().on_pr_merged(context)

    assert [step["action"] for step in result["cleanup"]] == ["remove-worktree", "set-task-status", "archive-session"]
    assert result["notification"]["delivered"] is False
    assert result["notification"]["error"] == "notifier offline"

    no_cleanup = _context_for("pr-lifecycle-management", "pr-merged", payload, hook_config={"cleanup_after_merge": False})
    assert PRLifecycleManagementHook().on_pr_merged(no_cleanup)["cleanup"] == []


def test_checks_failed_escalates_by_failure_count() -> None:
    checks = [
        {"name": "lint", "conclusion": "failure"},
        {"name": "tests", "conclusion": "failure"},
        {"name": "docs", "conclusion": "success"},
    ]
    config = {
        "required_checks": ["tests"],
        "notifications": {
            "channels": {"slack": {"enabled": True, "events": ["pr-checks-failed"]}},
            "escalation": {"enabled": True, "rules": [{"trigger": "15min", "channels": ["sms"]}]},
        },
    }
    context = _context_for("pr-lifecycle-management", "pr-checks-failed", {"pr": {"number": 11, "checks": checks}}, hook_config=config)

    result = PRLifecycleManagementHook().on_pr_checks_failed(context)

    assert result["failed_checks"] == ["lint", "tests"]
    assert result["blocking_checks"] == ["tests"]
    assert result["total_checks"] == 3
    assert result["escalation"] == "15min"
    assert result["notification"]["channels"] == ["app", "slack", "sms"]
    assert result["notification"]["priority"] == "high"
    assert channels_for("pr-checks-failed", {"enabled": False, "channels": {"slack": {"enabled": True}}}) == ["app"]


def test_research_results_are_cached_and_fed_back() -> None:
    hook = ResearchIntegrationHook()
    request = {"query": "Async  retries in Python", "type": "technical", "task": {"id": "12", "title": "Retries"}}
    results = {
        "findings": ["Use exponential backoff"],
        "recommendations": ["Cap the retry count"],
        "sources": [
            {"name": "Blog", "url": "https://example.com/blog", "relevance": 0.4},
            {"name": "Docs", "url": "https://example.com/docs", "relevance": 0.9},
        ],
        "confidence": 0.8,
    }

    async def scenario():
        miss = await hook.on_pre_research(_context_for("research-integration", "pre-research", request))
        post = await hook.on_post_research(
            _context_for("research-integration", "post-research", {**request, "results": results})
        )
        hit = await hook.on_pre_research(
            _context_for("research-integration", "pre-research", {**request, "query": "async retries in python"})
        )
        return miss, post, hit

    miss, post, hit = asyncio.run(scenario())

    assert miss["from_cache"] is False
    assert miss["task_context"] == {"id": "12", "title": "Retries"}
    assert post["analysis"]["top_sources"][0]["name"] == "Docs"
    assert post["task_update"]["task_id"] == "12"
    assert "- Use exponential backoff" in post["task_update"]["append_details"]
    assert hit["from_cache"] is True
    assert hit["skip_research"] is True
    assert hit["results"]["confidence"] == 0.8
    assert hit["cache_key"] == research_cache_key("async retries in python", "technical")
    assert hit["statistics"] == {"requests": 2, "cache_hits": 1, "cache_misses": 1, "completed": 1}


def test_research_requires_a_query() -> None:
    context = _context_for("research-integration", "pre-research", {"query": "   "})

    with pytest.raises(ValueError, match="query is required"):
        asyncio.run(ResearchIntegrationHook().on_pre_research(context))


def test_pr_events_reach_lifecycle_hook_through_manager(tmp_path: Path) -> None:
    manager = HookManager(FlowHooksConfig(settings=SettingsConfig(path="hooks.yaml")), root=tmp_path)
    manager.initialize()

    report = manager.emit("pr-checks-failed", {"pr": {"number": 5, "checks": [{"name": "ci", "conclusion": "failure"}]}})
    missing = manager.emit("pr-merged", {})

    assert report.outcome_for("pr-lifecycle-management").data["failed_checks"] == ["ci"]
    assert missing.outcome_for("pr-lifecycle-management").success is False
    assert missing.outcome_for("pr-lifecycle-management").error == "No PR number provided"
    manager.shutdown()
