from __future__ import annotations

import logging
from collections.abc import Collection
from typing import Any

from ..db.batch_insert import BatchMetrics, batch_insert, transaction
from ..models.errors import AuditLogError
from ..models.import_result import ImportReport, SheetOutcome, jsonable

"""Audit trail: one imports_log row per sheet of a finished run.

Rows are written with a single execute_values batch in their own
transaction after the data step. A failure here does not undo the data step
(it already committed); it surfaces as AuditLogError carrying the report.
"""

__all__ = [
    "IMPORTS_LOG_TABLE",
    "LOG_COLUMNS",
    "build_log_rows",
    "persist_logs",
]

logger = logging.getLogger(__name__)

IMPORTS_LOG_TABLE = "imports_log"
LOG_COLUMNS = (
    "batch_id",
    "sheet_name",
    "file_name",
    "template_version",
    "preview",
    "status",
    "totals",
    "warnings",
    "errors",
    "duplicates",
    "metadata",
    "duration_ms",
    "requested_by",
)


def _metadata(report: ImportReport, sheet: SheetOutcome, clear_requested: Collection[str]) -> dict[str, Any]:
    return {
        "preview": report.preview,
        "mode": report.mode,
        "clear_tables": report.clear_tables,
        "sheet_cleared": (not report.preview) and sheet.cleared,
        "sheet_clear_requested": report.clear_tables and sheet.sheet in clear_requested,
    }


def build_log_rows(
    report: ImportReport,
    *,
    requested_by: Any = None,
    clear_requested: Collection[str] = (),
) -> list[list[Any]]:
    """One row per sheet outcome (absent sheets included), in LOG_COLUMNS order."""
    rows: list[list[Any]] = []
    for sheet in report.sheets.values():
        rows.append(
            [
                report.batch_id,
                sheet.sheet,
                report.file_name,
                report.template_version,
                report.preview,
                sheet.status,
                sheet.totals(),
                list(sheet.warnings),
                [e.to_dict() for e in sheet.errors],
                [d.to_dict() for d in sheet.duplicates],
                jsonable(_metadata(report, sheet, clear_requested)),
                report.duration_ms,
                requested_by,
            ]
        )
    return rows


def _log_batch_metrics(metrics: BatchMetrics) -> None:
    logger.debug("imports_log insert size=%d elapsed=%.3fs", metrics.batch_size, metrics.elapsed_seconds)


def persist_logs(
    cursor: Any,
    report: ImportReport,
    *,
    requested_by: Any = None,
    clear_requested: Collection[str] = (),
) -> int:
    rows = build_log_rows(report, requested_by=requested_by, clear_requested=clear_requested)
    try:
        with transaction(cursor):
            result = batch_insert(
                cursor, IMPORTS_LOG_TABLE, LOG_COLUMNS, rows, metrics_callback=_log_batch_metrics
            )
    except Exception as e:
        raise AuditLogError(
            "The import finished but its audit log could not be written.",
            report=report,
            details={"batch_id": report.batch_id, "message": str(e)},
        ) from e
    logger.debug("imports_log rows=%d batch=%s", result.inserted_rows, report.batch_id)
    return result.inserted_rows
