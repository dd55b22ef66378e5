"""Per-dispatch execution contexts handed to hook handlers."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any

from flowhooks.events import event_value

HOOK_LOGGER_PREFIX = "flowhooks.hook"


class CancellationToken:
    """Set by the executor when a handler's time budget runs out.

    Handlers may poll ``cancelled`` or block on ``wait`` to stop promptly.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)


@dataclass(frozen=True)
class ExecutionContext:
    event: str
    payload: Any = None
    hook_name: str | None = None
    start_time: float = 0.0
    services: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    hook_config: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    cancel_token: CancellationToken = field(default_factory=CancellationToken)

    @property
    def storage(self) -> Any:
        return self.services.get("storage")

    @property
    def logger(self) -> logging.Logger:
        return self.services.get("logger") or logging.getLogger(HOOK_LOGGER_PREFIX)

    @property
    def cancelled(self) -> bool:
        return self.cancel_token.cancelled

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.start_time) * 1000


class ContextFactory:
    def __init__(self, default_services: Mapping[str, Any] | None = None) -> None:
        self.default_services = dict(default_services or {})

    def build(
        self,
        event: str,
        payload: Any = None,
        services: Mapping[str, Any] | None = None,
    ) -> ExecutionContext:
        merged = {**self.default_services, **(services or {})}
        return ExecutionContext(
            event=event_value(event),
            payload=payload,
            start_time=time.perf_counter(),
            services=MappingProxyType(merged),
        )

    def for_hook(
        self,
        base: ExecutionContext,
        hook_name: str,
        hook_config: Mapping[str, Any] | None = None,
    ) -> ExecutionContext:
        services = dict(base.services)
        services.setdefault("logger", logging.getLogger(f"{HOOK_LOGGER_PREFIX}.{hook_name}"))
        return replace(
            base,
            hook_name=hook_name,
            start_time=time.perf_counter(),
            services=MappingProxyType(services),
            hook_config=MappingProxyType(dict(hook_config or {})),
            cancel_token=CancellationToken(),
        )
