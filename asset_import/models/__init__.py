"""Domain models for the asset import engine.

Configuration shapes, the versioned sheet template, the per-run report and
the structured failure types live here; services import from this package.
"""

from .config_models import DatabaseConfig, ImportConfig, ImportLimits
from .errors import AuditLogError, ImportFailure
from .import_result import (
    DuplicateRecord,
    ImportReport,
    ImportTotals,
    RowErrorEntry,
    RowOutcome,
    RowStatus,
    SheetOutcome,
    SheetStatus,
)
from .sheet_definitions import SHEET_DEFINITIONS, SHEET_SEQUENCE, TEMPLATE_VERSION, SheetDefinition

__all__ = [
    # Configuration models
    "DatabaseConfig",
    "ImportConfig",
    "ImportLimits",
    # Template
    "SHEET_DEFINITIONS",
    "SHEET_SEQUENCE",
    "TEMPLATE_VERSION",
    "SheetDefinition",
    # Report models
    "DuplicateRecord",
    "ImportReport",
    "ImportTotals",
    "RowErrorEntry",
    "RowOutcome",
    "RowStatus",
    "SheetOutcome",
    "SheetStatus",
    # Failures
    "AuditLogError",
    "ImportFailure",
]
