from pathlib import Path

import pytest
import yaml

from warden.configuration.app_configuration import AppConfig


@pytest.fixture()
def config_path(tmp_path: Path) -> Path:
    return tmp_path / "app_config.yml"


def test_app_config_reload_parses_yaml(config_path: Path, tmp_path: Path) -> None:
    config_payload = {
        "database": {"path": str(tmp_path / "custom.db")},
        "permissions": {"cache_ttl_seconds": 30, "cache_max_entries": 50},
        "moderation": {"max_tempban_days": 14, "max_jail_days": 2, "default_reason": "Rules violation"},
    }
    config_path.write_text(yaml.safe_dump(config_payload), encoding="utf-8")

    config = AppConfig(config_path)

    assert config.database_path == (tmp_path / "custom.db").resolve()
    assert config.permission_cache_ttl == pytest.approx(30.0)
    assert config.permission_cache_max_entries == 50
    assert config.max_tempban_seconds == 14 * 86400
    assert config.max_jail_seconds == 2 * 86400
    assert config.default_reason == "Rules violation"
    assert config.get("moderation")["max_jail_days"] == 2


def test_app_config_missing_file_returns_defaults(tmp_path: Path) -> None:
    config = AppConfig(tmp_path / "does_not_exist.yml")

    assert config.data == {}
    assert config.database_path.name == "warden.db"
    assert config.permission_cache_ttl == pytest.approx(300.0)
    assert config.permission_cache_max_entries == 1000
    assert config.max_tempban_seconds == 30 * 86400
    assert config.max_jail_seconds == 7 * 86400
    assert config.default_reason == "No reason provided"


def test_app_config_ignores_malformed_sections(config_path: Path) -> None:
    config_path.write_text("moderation: just a string\npermissions: [1, 2]\n", encoding="utf-8")

    config = AppConfig(config_path)

    assert config.max_jail_seconds == 7 * 86400
    assert config.permission_cache_max_entries == 1000


def test_app_config_non_mapping_document(config_path: Path) -> None:
    config_path.write_text("- a\n- b\n", encoding="utf-8")
    assert AppConfig(config_path).data == {}


def test_app_config_reload_picks_up_changes(config_path: Path) -> None:
    config_path.write_text(yaml.safe_dump({"moderation": {"max_jail_days": 1}}), encoding="utf-8")
    config = AppConfig(config_path)
    assert config.max_jail_seconds == 86400

    config_path.write_text(yaml.safe_dump({"moderation": {"max_jail_days": 3}}), encoding="utf-8")
    config.reload()
    assert config.max_jail_seconds == 3 * 86400
