from pathlib import Path

import yaml

from flowhooks.models import HookSettings, HookSettingsFile
from flowhooks.settings import HookSettingsStore


def test_missing_file_falls_back_to_bundled_default_and_persists_it(tmp_path: Path) -> None:
    path = tmp_path / "flow" / "hooks.yaml"
    store = HookSettingsStore(path)

    settings = store.load()

    assert store.last_source == "default"
    assert settings.enabled is True
    assert "pre-launch-validation" in settings.hooks
    assert path.exists()
    assert yaml.safe_load(path.read_text())["hooks"]["pre-launch-validation"]["enabled"] is True


def test_unparseable_file_falls_back_to_default(tmp_path: Path) -> None:
    path = tmp_path / "hooks.yaml"
    path.write_text("enabled: [unterminated\n")
    default = tmp_path / "default.yaml"
    default.write_text("enabled: false\nhooks:\n  custom:\n    enabled: false\n")

    settings = HookSettingsStore(path, default_path=default).load()

    assert settings.enabled is False
    assert settings.hooks["custom"].enabled is False


def test_unreadable_default_yields_minimal_configuration(tmp_path: Path) -> None:
    store = HookSettingsStore(tmp_path / "hooks.yaml", default_path=tmp_path / "missing.yaml")

    settings = store.load()

    assert store.last_source == "fallback"
    assert settings == HookSettingsFile()
    assert not (tmp_path / "hooks.yaml").exists()


def test_save_replaces_file_without_leaving_temp_files(tmp_path: Path) -> None:
    path = tmp_path / "hooks.yaml"
    store = HookSettingsStore(path)
    settings = HookSettingsFile(enabled=True, hooks={"echo": HookSettings(enabled=False, config={"level": 2})})

    store.save(settings)
    store.save(settings.model_copy(update={"enabled": False}))

    assert [item.name for item in tmp_path.iterdir()] == ["hooks.yaml"]
    reloaded = HookSettingsStore(path).load()
    assert reloaded.enabled is False
    assert reloaded.hooks["echo"].config == {"level": 2}
