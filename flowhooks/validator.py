"""Structural and heuristic validation of hook descriptors.

The security scan is a linting aid over handler source text. It is trivially
defeated by obfuscation and is not an isolation boundary.
"""

from __future__ import annotations

import inspect
import io
import logging
import re
import textwrap
import tokenize
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from flowhooks.contract import MISSING, DescriptorView, HookDescriptor, build_descriptor, inspect_descriptor
from flowhooks.events import KNOWN_EVENTS, event_value

logger = logging.getLogger(__name__)

MAX_TIMEOUT_MS = 5 * 60 * 1000
SEMVER_PATTERN = re.compile(r"^\d+\.\d+\.\d+(?:[-+][0-9A-Za-z.-]+)?$")

ALLOWED_PROPERTIES = frozenset(
    {
        "events",
        "handlers",
        "timeout",
        "per_event_timeouts",
        "perEventTimeouts",
        "version",
        "description",
        "name",
        "store_results",
        "config",
    }
)

DANGEROUS_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("dynamic code evaluation", re.compile(r"(?<![\w.])(?:eval|exec|compile)\s*\(")),
    ("dynamic code evaluation", re.compile(r"\b__import__\s*\(")),
    ("process termination", re.compile(r"\bos\.(?:kill|killpg|_exit|abort)\b")),
    ("process termination", re.compile(r"\bsys\.exit\s*\(")),
    ("subprocess spawning", re.compile(r"\bsubprocess\.")),
    ("subprocess spawning", re.compile(r"\bos\.(?:system|popen|exec\w*|spawn\w*|fork)\b")),
    ("destructive filesystem call", re.compile(r"\bshutil\.rmtree\b")),
    ("destructive filesystem call", re.compile(r"\bos\.(?:remove|unlink|rmdir|removedirs)\b")),
    ("destructive filesystem call", re.compile(r"\.(?:unlink|rmdir)\s*\(")),
    ("class-chain tampering", re.compile(r"\.__(?:class|bases|dict)__\s*=(?!=)")),
)

SUSPICIOUS_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("dunder introspection", re.compile(r"\.__(?:class|bases|mro|subclasses|globals|builtins|code)__\b")),
    ("network primitive", re.compile(r"\bsocket\.")),
    ("network primitive", re.compile(r"\burllib\.request\b")),
    ("network primitive", re.compile(r"\brequests\.(?:get|post|put|patch|delete|head|request|Session)\b")),
    ("network primitive", re.compile(r"\bhttpx\.")),
    ("network primitive", re.compile(r"\baiohttp\.")),
)


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    descriptor: HookDescriptor | None = None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _strip_comments(source: str) -> str:
    try:
        tokens = [
            token
            for token in tokenize.generate_tokens(io.StringIO(source).readline)
            if token.type != tokenize.COMMENT
        ]
        return tokenize.untokenize(tokens)
    except (tokenize.TokenError, SyntaxError, ValueError):
        return source


def handler_source(handler: Any) -> str | None:
    target = getattr(handler, "__func__", handler)
    try:
        source = inspect.getsource(target)
    except (OSError, TypeError):
        return None
    return _strip_comments(textwrap.dedent(source))


class HookValidator:
    """Validate hook descriptors against the contract and static heuristics.

    All checks run to completion so the caller gets a full report.
    """

    def __init__(self, strict: bool = False, max_timeout_ms: float = MAX_TIMEOUT_MS) -> None:
        self.strict = strict
        self.max_timeout_ms = max_timeout_ms

    def validate(self, descriptor: Any) -> ValidationResult:
        errors: list[str] = []
        warnings: list[str] = []
        try:
            if descriptor is None or isinstance(descriptor, (str, bytes, int, float, bool, list, tuple, set)):
                return ValidationResult(valid=False, errors=["Hook must be an object or mapping"])

            view = inspect_descriptor(descriptor)
            events = self._check_structure(view, errors, warnings)
            self._check_handlers(view, events, errors, warnings)
            self._check_security(view, errors, warnings)
            self._check_configuration(view, errors, warnings)
            if self.strict:
                self._check_properties(view, warnings)

            valid = not errors
            return ValidationResult(
                valid=valid,
                errors=errors,
                warnings=warnings,
                descriptor=build_descriptor(view) if valid else None,
            )
        except Exception as exc:  # noqa: BLE001 - validation never raises
            logger.debug("Validator fault", exc_info=True)
            return ValidationResult(valid=False, errors=[f"Validation failed: {exc}"], warnings=warnings)

    def _check_structure(self, view: DescriptorView, errors: list[str], warnings: list[str]) -> list[str]:
        raw = view.get("events")
        if raw is MISSING or raw is None:
            errors.append("Hook must declare an 'events' collection")
            return []
        if isinstance(raw, (str, bytes, Mapping)) or not isinstance(raw, (list, tuple, set, frozenset)):
            errors.append("Hook 'events' must be a list of event names")
            return []

        events: list[str] = []
        for item in raw:
            if not isinstance(item, str):
                errors.append(f"Event names must be strings, got {type(item).__name__}")
                continue
            name = event_value(item)
            events.append(name)
            if name not in KNOWN_EVENTS:
                warnings.append(f"Unknown event '{name}'")

        if not events and not errors:
            warnings.append("Hook declares no events and will never run")
        return events

    def _check_handlers(
        self,
        view: DescriptorView,
        events: list[str],
        errors: list[str],
        warnings: list[str],
    ) -> None:
        declared = set(events)
        for event in events:
            name, candidate = view.handler_candidate(event)
            if candidate is MISSING:
                errors.append(f"Event '{event}' is declared but handler '{name}' is not implemented")
            elif not callable(candidate):
                errors.append(f"Handler '{name}' for event '{event}' is not callable")

        for name, event in sorted(view.handler_events().items()):
            if event not in declared:
                warnings.append(f"Handler '{name}' has no matching declared event '{event}'")

    def _check_security(self, view: DescriptorView, errors: list[str], warnings: list[str]) -> None:
        for name, handler in sorted(view.candidates.items()):
            if not callable(handler):
                continue
            source = handler_source(handler)
            if source is None:
                warnings.append(f"Source for handler '{name}' is unavailable; security scan skipped")
                continue
            for label, pattern in DANGEROUS_PATTERNS:
                match = pattern.search(source)
                if match:
                    errors.append(f"Handler '{name}' contains dangerous code ({label}): {match.group(0).strip()}")
            for label, pattern in SUSPICIOUS_PATTERNS:
                match = pattern.search(source)
                if match:
                    warnings.append(f"Handler '{name}' contains suspicious code ({label}): {match.group(0).strip()}")

    def _check_configuration(self, view: DescriptorView, errors: list[str], warnings: list[str]) -> None:
        timeout = view.get("timeout", None)
        if timeout is not None:
            if not _is_number(timeout) or timeout <= 0:
                errors.append(f"Hook 'timeout' must be a positive number of milliseconds, got {timeout!r}")
            elif timeout > self.max_timeout_ms:
                warnings.append(f"Hook 'timeout' of {timeout}ms exceeds {int(self.max_timeout_ms)}ms")

        per_event = view.get("per_event_timeouts", None)
        if per_event is not None:
            if not isinstance(per_event, Mapping):
                errors.append("Hook 'per_event_timeouts' must be a mapping of event name to milliseconds")
            else:
                for event, value in per_event.items():
                    if not _is_number(value) or value <= 0:
                        errors.append(f"Timeout for event '{event}' must be a positive number, got {value!r}")
                    elif value > self.max_timeout_ms:
                        warnings.append(f"Timeout for event '{event}' of {value}ms exceeds {int(self.max_timeout_ms)}ms")

        version = view.get("version", None)
        if version is not None:
            if not isinstance(version, str):
                errors.append(f"Hook 'version' must be a string, got {type(version).__name__}")
            elif not SEMVER_PATTERN.match(version):
                warnings.append(f"Hook version '{version}' is not in major.minor.patch form")

    def _check_properties(self, view: DescriptorView, warnings: list[str]) -> None:
        for name in sorted(view.properties):
            if name not in ALLOWED_PROPERTIES:
                warnings.append(f"Unexpected hook property '{name}'")
