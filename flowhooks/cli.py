"""CLI entrypoint for inspecting and driving the hook engine."""

from __future__ import annotations

import argparse
import importlib
import json
import logging
from pathlib import Path

import yaml

from flowhooks.config import load_effective_config
from flowhooks.errors import HookError
from flowhooks.events import LifecycleEvent
from flowhooks.logging_utils import configure_logging
from flowhooks.manager import HookManager
from flowhooks.storage import SQLiteHookStore
from flowhooks.validator import HookValidator

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_DISPATCH_FAILED = 2


def _load_yaml_dict(path: str | None) -> dict | None:
    if not path:
        return None
    data = yaml.safe_load(Path(path).read_text())
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ValueError(f"YAML at {path} must decode to a mapping")
    return data


def _build_manager(args: argparse.Namespace) -> HookManager:
    manager = HookManager.from_repo(
        args.repo_path,
        system_defaults=_load_yaml_dict(args.system_config),
        runtime_override=_load_yaml_dict(args.runtime_override),
    )
    manager.initialize()
    return manager


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _load_target(target: str):
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Expected MODULE:ATTR, got {target!r}")
    obj = getattr(importlib.import_module(module_name), attr)
    return obj() if isinstance(obj, type) else obj


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="flowhooks lifecycle hook engine")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (DEBUG, INFO, WARNING, ERROR)")
    parser.add_argument("--repo-path", default=".", help="Project root holding .flowhooks.yaml and hook settings")
    parser.add_argument("--system-config", help="Optional system defaults YAML")
    parser.add_argument("--runtime-override", help="Optional runtime override YAML")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Show registered hooks and their state")

    enable = sub.add_parser("enable", help="Enable a hook")
    enable.add_argument("name")
    disable = sub.add_parser("disable", help="Disable a hook")
    disable.add_argument("name")

    system = sub.add_parser("system", help="Turn the whole hook system on or off")
    system.add_argument("state", choices=["on", "off"])

    validate = sub.add_parser("validate", help="Validate a hook object given as MODULE:ATTR")
    validate.add_argument("target")
    validate.add_argument("--strict", action="store_true", help="Warn about unexpected hook properties")

    dispatch = sub.add_parser("dispatch", help="Dispatch a lifecycle event to registered hooks")
    dispatch.add_argument("event", help="Event name, e.g. pre-launch")
    dispatch.add_argument("--payload", help="Path to a JSON payload file")

    history = sub.add_parser("history", help="Show stored data for a hook")
    history.add_argument("name")
    history.add_argument("--event", help="Only show data recorded for this event")
    history.add_argument("--limit", type=int, default=20)

    return parser


def _run_status(args: argparse.Namespace) -> int:
    manager = _build_manager(args)
    _print_json(manager.get_hook_status().model_dump(mode="json"))
    return EXIT_OK


def _run_toggle(args: argparse.Namespace, enabled: bool) -> int:
    manager = _build_manager(args)
    manager.set_hook_enabled(args.name, enabled)
    print(f"{args.name}: {'enabled' if enabled else 'disabled'}")
    return EXIT_OK


def _run_system(args: argparse.Namespace) -> int:
    manager = _build_manager(args)
    manager.set_system_enabled(args.state == "on")
    print(f"hook system: {args.state}")
    return EXIT_OK


def _run_validate(args: argparse.Namespace) -> int:
    result = HookValidator(strict=args.strict).validate(_load_target(args.target))
    _print_json({"valid": result.valid, "errors": result.errors, "warnings": result.warnings})
    return EXIT_OK if result.valid else EXIT_ERROR


def _run_dispatch(args: argparse.Namespace) -> int:
    known = {event.value for event in LifecycleEvent}
    if args.event not in known:
        logger.warning("Dispatching unknown event %s", args.event)
    payload = json.loads(Path(args.payload).read_text()) if args.payload else {}

    manager = _build_manager(args)
    try:
        report = manager.emit(args.event, payload)
    finally:
        manager.shutdown()
    _print_json(report.model_dump(mode="json"))
    return EXIT_OK if report.all_succeeded else EXIT_DISPATCH_FAILED


def _run_history(args: argparse.Namespace) -> int:
    config = load_effective_config(
        args.repo_path,
        system_defaults=_load_yaml_dict(args.system_config),
        runtime_override=_load_yaml_dict(args.runtime_override),
    )
    if config.storage.backend != "sqlite":
        raise ValueError("history currently requires storage.backend=sqlite")
    storage = SQLiteHookStore(Path(args.repo_path) / config.storage.sqlite_path)
    _print_json(storage.get_hook_history(args.name, event=args.event, limit=args.limit))
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    try:
        if args.command == "status":
            return _run_status(args)
        if args.command == "enable":
            return _run_toggle(args, True)
        if args.command == "disable":
            return _run_toggle(args, False)
        if args.command == "system":
            return _run_system(args)
        if args.command == "validate":
            return _run_validate(args)
        if args.command == "dispatch":
            return _run_dispatch(args)
        if args.command == "history":
            return _run_history(args)
    except (HookError, ValueError, OSError, ImportError, AttributeError) as exc:
        logger.error("%s failed: %s", args.command, exc)
        return EXIT_ERROR

    parser.print_help()
    return EXIT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
