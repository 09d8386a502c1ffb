import json

from tally.settings import (
    DEFAULTS, get_data_dir, get_db_path, is_configured, load_settings, resolve_data_dir, save_settings,
)


def test_save_and_load_roundtrip(tmp_path, monkeypatch):
    monkeypatch.setattr("tally.settings.SETTINGS_PATH", tmp_path / "settings.json")
    monkeypatch.setattr("tally.settings.CONFIG_DIR", tmp_path)
    data = {**DEFAULTS, "default_category": "Supplies"}
    save_settings(data)
    loaded = load_settings()
    assert loaded["default_category"] == "Supplies"


def test_load_settings_returns_defaults_when_missing(tmp_path, monkeypatch):
    monkeypatch.setattr("tally.settings.SETTINGS_PATH", tmp_path / "settings.json")
    settings = load_settings()
    assert settings == DEFAULTS
    assert settings["review_threshold"] == 0.5
    assert settings["use_default_rules"] is True


def test_load_settings_merges_with_defaults(tmp_path, monkeypatch):
    settings_path = tmp_path / "settings.json"
    settings_path.write_text(json.dumps({"review_threshold": 0.85}))
    monkeypatch.setattr("tally.settings.SETTINGS_PATH", settings_path)
    settings = load_settings()
    assert settings["review_threshold"] == 0.85
    assert settings["default_vendor"] == ""


def test_get_data_dir_and_db_path(tmp_path, monkeypatch):
    settings_path = tmp_path / "settings.json"
    settings_path.write_text(json.dumps({"data_dir": "/tmp/custom-tally"}))
    monkeypatch.setattr("tally.settings.SETTINGS_PATH", settings_path)
    assert str(get_data_dir()) == "/tmp/custom-tally"
    assert str(get_db_path()) == "/tmp/custom-tally/tally.db"


def test_save_creates_config_dir(tmp_path, monkeypatch):
    config_dir = tmp_path / "config" / "tally"
    monkeypatch.setattr("tally.settings.CONFIG_DIR", config_dir)
    monkeypatch.setattr("tally.settings.SETTINGS_PATH", config_dir / "settings.json")
    save_settings(DEFAULTS)
    assert (config_dir / "settings.json").exists()


def test_is_configured_after_save(tmp_path, monkeypatch):
    monkeypatch.setattr("tally.settings.CONFIG_DIR", tmp_path)
    monkeypatch.setattr("tally.settings.SETTINGS_PATH", tmp_path / "settings.json")
    assert is_configured() is False
    save_settings(DEFAULTS)
    assert is_configured() is True


def test_resolve_data_dir_expands_home(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    assert resolve_data_dir("~/books") == str((tmp_path / "books").resolve())
