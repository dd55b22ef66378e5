"""Configuration models and loading for the hook engine."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

REPO_CONFIG_NAME = ".flowhooks.yaml"


class ExecutorConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    default_timeout_ms: float = Field(default=30_000, gt=0)
    max_concurrent: int = Field(default=3, ge=1)


class ValidatorConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    strict: bool = False
    max_timeout_ms: float = Field(default=300_000, gt=0)


class DiscoveryConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    builtin_package: str | None = "flowhooks.builtins"
    hook_dirs: list[str] = Field(default_factory=list)


class SettingsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    path: str = ".taskmaster/flow/hooks.yaml"
    # None selects the default shipped in flowhooks/data.
    default_path: str | None = None


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    backend: str = "sqlite"
    sqlite_path: str = ".taskmaster/flow/hooks.db"
    persist_results: bool = True


class FlowHooksConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    validator: ValidatorConfig = Field(default_factory=ValidatorConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    settings: SettingsConfig = Field(default_factory=SettingsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_yaml_mapping(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text())
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"YAML at {path} must decode to a mapping")
    return data


def load_effective_config(
    repo_path: str | Path,
    system_defaults: dict[str, Any] | None = None,
    runtime_override: dict[str, Any] | None = None,
) -> FlowHooksConfig:
    """Load config with precedence runtime > repo .flowhooks.yaml > system."""
    repo_config = load_yaml_mapping(Path(repo_path) / REPO_CONFIG_NAME)

    merged: dict[str, Any] = {}
    if system_defaults:
        merged = _deep_merge(merged, system_defaults)
    if repo_config:
        merged = _deep_merge(merged, repo_config)
    if runtime_override:
        merged = _deep_merge(merged, runtime_override)

    return FlowHooksConfig.model_validate(merged)
