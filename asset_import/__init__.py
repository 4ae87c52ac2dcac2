"""Bulk asset import engine: workbook validation, preview and transactional commit."""

from .models.errors import AuditLogError, ImportFailure
from .models.import_result import ImportReport
from .services.normalizers import resolve_flag
from .services.orchestrator import check_upload, run_asset_import, template_info

__version__ = "1.0.0"

__all__ = [
    "AuditLogError",
    "ImportFailure",
    "ImportReport",
    "check_upload",
    "resolve_flag",
    "run_asset_import",
    "template_info",
]
