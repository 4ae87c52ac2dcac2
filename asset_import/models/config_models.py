from __future__ import annotations

from dataclasses import dataclass, field

"""Config dataclasses for the asset import engine.

These are the typed shapes produced by asset_import.config.loader. The
loader validates the raw YAML against the JSON schema first, so the
dataclasses only carry values and defaults.
"""

DEFAULT_MAX_FILE_SIZE_BYTES = 5 * 1024 * 1024  # 5 MiB
DEFAULT_MAX_ASSET_ROWS = 500
DEFAULT_ERROR_LOG_DIR = "./logs"


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class ImportLimits:
    """Upload and workbook ceilings enforced before any persistence."""
    max_file_size_bytes: int = DEFAULT_MAX_FILE_SIZE_BYTES
    max_asset_rows: int = DEFAULT_MAX_ASSET_ROWS


@dataclass(frozen=True)
class ImportConfig:
    """Root configuration object for an import invocation."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    limits: ImportLimits = field(default_factory=ImportLimits)
    error_log_dir: str = DEFAULT_ERROR_LOG_DIR
