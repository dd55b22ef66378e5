"""Pydantic models for hook outcomes, reports, status and persisted settings."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field


class SkipReason(str, Enum):
    DISABLED = "disabled"
    METHOD_NOT_IMPLEMENTED = "method-not-implemented"
    CONCURRENCY_LIMIT = "concurrency-limit-reached"


class ExecutionOutcome(BaseModel):
    model_config = ConfigDict(extra="forbid")

    hook_name: str
    event: str
    success: bool
    data: Any = None
    error: str | None = None
    stack: str | None = None
    duration_ms: float = 0.0
    skipped: bool = False
    reason: SkipReason | None = None


class DispatchReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    event: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    outcomes: list[ExecutionOutcome] = Field(default_factory=list)
    executed_names: list[str] = Field(default_factory=list)
    skipped_names: list[str] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def all_succeeded(self) -> bool:
        return all(outcome.success for outcome in self.outcomes)

    def outcome_for(self, hook_name: str) -> ExecutionOutcome | None:
        for outcome in self.outcomes:
            if outcome.hook_name == hook_name:
                return outcome
        return None

    @property
    def failures(self) -> list[ExecutionOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.success]


class HookStatusEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    enabled: bool
    events: list[str]
    version: str | None = None
    description: str = ""
    source: str = "programmatic"
    registered_at: datetime


class HookStatusSnapshot(BaseModel):
    model_config = ConfigDict(extra="forbid")

    initialized: bool
    system_enabled: bool
    total: int
    enabled_count: int
    disabled_count: int
    in_flight: int = 0
    settings_source: str | None = None
    hooks: list[HookStatusEntry] = Field(default_factory=list)
    discovery_errors: dict[str, str] = Field(default_factory=dict)


class HookSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    enabled: bool = True
    config: dict[str, Any] = Field(default_factory=dict)


class HookSettingsFile(BaseModel):
    """Persisted enable/disable record."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = True
    hooks: dict[str, HookSettings] = Field(default_factory=dict)
