"""Persisted enable/disable record for registered hooks."""

from __future__ import annotations

import logging
import os
import tempfile
from importlib import resources
from pathlib import Path

import yaml
from pydantic import ValidationError

from flowhooks.models import HookSettingsFile

logger = logging.getLogger(__name__)

BUNDLED_DEFAULT = "data/default_hooks.yaml"


def _read_settings(text: str) -> HookSettingsFile:
    data = yaml.safe_load(text)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("hook settings must decode to a mapping")
    return HookSettingsFile.model_validate(data)


class HookSettingsStore:
    """YAML-backed settings, read once and rewritten wholesale on every change.

    Load order: persisted file, then the default (bundled unless
    ``default_path`` is given), then an empty record. Writes go through a
    temporary file and ``os.replace``; concurrent writers are not
    coordinated and the last one wins.
    """

    def __init__(self, path: str | Path, default_path: str | Path | None = None) -> None:
        self.path = Path(path)
        self.default_path = Path(default_path) if default_path else None
        self.last_source: str | None = None

    def _default_text(self) -> str:
        if self.default_path is not None:
            return self.default_path.read_text()
        return resources.files("flowhooks").joinpath(BUNDLED_DEFAULT).read_text()

    def load(self) -> HookSettingsFile:
        if self.path.exists():
            try:
                settings = _read_settings(self.path.read_text())
                self.last_source = "persisted"
                return settings
            except (OSError, ValueError, yaml.YAMLError, ValidationError) as exc:
                logger.warning("Could not load hook settings from %s, using defaults: %s", self.path, exc)

        try:
            settings = _read_settings(self._default_text())
        except (OSError, ValueError, yaml.YAMLError, ValidationError) as exc:
            logger.warning("Could not load default hook settings, using empty configuration: %s", exc)
            self.last_source = "fallback"
            return HookSettingsFile()

        self.last_source = "default"
        try:
            self.save(settings)
        except OSError as exc:
            logger.warning("Could not persist default hook settings to %s: %s", self.path, exc)
        return settings

    def save(self, settings: HookSettingsFile) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        text = yaml.safe_dump(settings.model_dump(mode="json"), sort_keys=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w") as handle:
                handle.write(text)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Saved hook settings to %s", self.path)
