import json

from localinfer.config import AppSettings, load_settings, save_settings


def test_config_json_wins_by_default(tmp_path, monkeypatch):
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"orc_base_url": "http://config"}))
    monkeypatch.setenv("LOCALINFER_ORC_BASE_URL", "http://env")
    monkeypatch.delenv("LOCALINFER_ENV_OVERRIDES_CONFIG", raising=False)

    settings = load_settings(config_path)
    assert settings.orc_base_url == "http://config"


def test_env_override_when_enabled(tmp_path, monkeypatch):
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"orc_base_url": "http://config"}))
    monkeypatch.setenv("LOCALINFER_ORC_BASE_URL", "http://env")
    monkeypatch.setenv("LOCALINFER_ENV_OVERRIDES_CONFIG", "true")

    settings = load_settings(config_path)
    assert settings.orc_base_url == "http://env"


def test_env_values_are_coerced(tmp_path, monkeypatch):
    monkeypatch.setenv("PORT", "9001")
    monkeypatch.setenv("LOCALINFER_DOWNLOAD_TIMEOUT_S", "12.5")

    settings = load_settings(tmp_path / "missing.json")
    assert settings.port == 9001
    assert settings.download_timeout_s == 12.5


def test_save_and_reload(tmp_path, monkeypatch):
    monkeypatch.delenv("LOCALINFER_DATABASE_PATH", raising=False)
    config_path = tmp_path / "config.json"
    save_settings(AppSettings(database_path="other.db", port=8200), config_path)

    reloaded = load_settings(config_path)
    assert reloaded.database_path == "other.db"
    assert reloaded.port == 8200
