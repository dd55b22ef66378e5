"""Storage interface for hook-produced data."""

from __future__ import annotations

from typing import Any, Protocol


class HookDataStore(Protocol):
    def store_hook_data(self, hook_name: str, event: str, data: Any) -> int: ...

    def get_hook_history(self, hook_name: str, event: str | None = None, limit: int = 50) -> list[dict[str, Any]]: ...
