"""Exceptions raised by the hook engine."""

from __future__ import annotations


class HookError(Exception):
    """Base class for hook engine errors."""


class HookValidationError(HookError):
    """Raised when a hook fails validation at registration time."""

    def __init__(self, name: str, errors: list[str], warnings: list[str] | None = None):
        self.name = name
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        details = "; ".join(self.errors) or "unknown validation failure"
        super().__init__(f"Hook '{name}' failed validation: {details}")


class HookAlreadyRegisteredError(HookError, ValueError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Hook already registered: {name}")


class HookNotFoundError(HookError, LookupError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Hook not registered: {name}")
