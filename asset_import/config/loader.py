from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import (
    DEFAULT_ERROR_LOG_DIR,
    DEFAULT_MAX_ASSET_ROWS,
    DEFAULT_MAX_FILE_SIZE_BYTES,
    DatabaseConfig,
    ImportConfig,
    ImportLimits,
)

"""Config loader for the asset import CLI.

Responsibilities:
- Load YAML (config/import.yml by default)
- Validate it against import_schema.json (shipped inside this package)
- Apply defaults for limits and the error log directory
- Resolve the connection DSN, environment first, file as fallback
"""

__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_PATH",
    "SCHEMA_PATH",
    "load_config",
    "build_dsn",
]

DEFAULT_CONFIG_PATH = Path("config/import.yml")
SCHEMA_PATH = Path(__file__).with_name("import_schema.json")


class ConfigError(Exception):
    pass


def _validate_config_schema(data: Any) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: schema file missing or not JSON, or the config violates
            the schema (missing database section, wrong types, unknown keys).
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e

    _validate_config_schema(data)

    db_raw = data["database"] or {}
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )
    limits_raw = data.get("limits") or {}
    limits = ImportLimits(
        max_file_size_bytes=limits_raw.get("max_file_size_bytes", DEFAULT_MAX_FILE_SIZE_BYTES),
        max_asset_rows=limits_raw.get("max_asset_rows", DEFAULT_MAX_ASSET_ROWS),
    )
    return ImportConfig(
        database=db,
        limits=limits,
        error_log_dir=data.get("error_log_dir") or DEFAULT_ERROR_LOG_DIR,
    )


def build_dsn(db_cfg: DatabaseConfig, environ: Mapping[str, str] | None = None) -> str:
    """Resolve the libpq DSN.

    Precedence:
        1. DATABASE_URL / PGDSN (whole DSN)
        2. database.dsn from the config file
        3. PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE, each falling
           back to the matching config key, then to libpq-ish defaults
    """
    env = os.environ if environ is None else environ
    dsn = env.get("DATABASE_URL") or env.get("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn

    host = env.get("PGHOST", db_cfg.host or "localhost")
    port = env.get("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = env.get("PGUSER", db_cfg.user or "postgres")
    password = env.get("PGPASSWORD", db_cfg.password or "")
    database = env.get("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn
