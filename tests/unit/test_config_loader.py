from __future__ import annotations

from pathlib import Path

import pytest

from asset_import.config.loader import ConfigError, build_dsn, load_config
from asset_import.models.config_models import DatabaseConfig


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "import.yml"
    path.write_text(text, encoding="utf-8")
    return path


def test_load_config_reads_all_sections(write_config: Path):
    cfg = load_config(write_config)
    assert cfg.database.host == "localhost"
    assert cfg.database.port == 5432
    assert cfg.database.database == "appdb"
    assert cfg.limits.max_file_size_bytes == 1048576
    assert cfg.limits.max_asset_rows == 50
    assert cfg.error_log_dir == "./logs"


def test_load_config_applies_defaults(tmp_path: Path):
    cfg = load_config(_write(tmp_path, "database:\n  host: db\n"))
    assert cfg.limits.max_file_size_bytes == 5 * 1024 * 1024
    assert cfg.limits.max_asset_rows == 500
    assert cfg.error_log_dir == "./logs"


def test_missing_file_raises(tmp_path: Path):
    with pytest.raises(ConfigError, match="config file not found"):
        load_config(tmp_path / "nope.yml")


def test_invalid_yaml_raises(tmp_path: Path):
    with pytest.raises(ConfigError, match="invalid yaml"):
        load_config(_write(tmp_path, "database: [unclosed\n"))


@pytest.mark.parametrize(
    "text",
    [
        "limits:\n  max_asset_rows: 10\n",  # database section missing
        "database:\n  port: not-a-number\n",
        "database: {}\nlimits:\n  max_asset_rows: 0\n",
        "database: {}\nextra: 1\n",
    ],
)
def test_schema_violations_raise(tmp_path: Path, text: str):
    with pytest.raises(ConfigError, match="config validation failed"):
        load_config(_write(tmp_path, text))


def test_build_dsn_prefers_database_url():
    env = {"DATABASE_URL": "postgresql://u@h/db", "PGDSN": "host=x"}
    assert build_dsn(DatabaseConfig(dsn="host=cfg"), env) == "postgresql://u@h/db"


def test_build_dsn_uses_config_dsn_before_components():
    assert build_dsn(DatabaseConfig(host="h", dsn="host=cfg"), {}) == "host=cfg"


def test_build_dsn_components_env_over_config():
    cfg = DatabaseConfig(host="cfg-host", port=6543, user="cfg", password="pw", database="assets")
    dsn = build_dsn(cfg, {"PGHOST": "env-host"})
    assert dsn == "host=env-host port=6543 user=cfg dbname=assets password=pw"


def test_build_dsn_defaults_without_password():
    assert build_dsn(DatabaseConfig(), {}) == "host=localhost port=5432 user=postgres dbname=postgres"
