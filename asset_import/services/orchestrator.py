from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from ..excel.reader import SheetData, WorkbookReadError, extract_sheet, read_workbook
from ..logging.error_log import ErrorLogBuffer
from ..models.config_models import ImportConfig, ImportLimits
from ..models.error_record import FILE_LEVEL_SHEET, UNKNOWN_ROW, ErrorRecord
from ..models.errors import ImportFailure
from ..models.import_result import (
    DuplicateRecord,
    DuplicateSource,
    ImportReport,
    ImportTotals,
    RowErrorEntry,
    RowOutcome,
    RowStatus,
    SheetOutcome,
    SheetStatus,
)
from ..models.sheet_definitions import (
    SHEET_DEFINITIONS,
    SHEET_SEQUENCE,
    TEMPLATE_VERSION,
    SheetDefinition,
    template_path,
)
from .audit_log import persist_logs
from .committer import persist
from .entity_kinds import ENTITY_KINDS, kind_for
from .progress import ProgressTracker
from .registry import NaturalKeyRegistry

"""Import orchestration: one workbook -> one batch -> one report.

Run states:

    initializing -> validating (sheet by sheet, dependency order)
                 -> persisting (commit) | marking validated (preview)
                 -> finalizing -> logged

All run state lives in an ImportContext created per call; nothing is
shared between runs. Structural problems raise ImportFailure and no report
is returned. Row problems are collected into the report.
"""

__all__ = [
    "ImportContext",
    "run_asset_import",
    "check_upload",
    "template_info",
    "validate_sheet",
    "validation_status",
    "enforce_asset_ceiling",
    "mark_validated",
    "finalize",
]

logger = logging.getLogger(__name__)

ASSETS_SHEET = "assets"
ROW_ERROR_TYPE = "ROW_VALIDATION_ERROR"
FAILURE_ERROR_TYPE = "IMPORT_FAILURE"


@dataclass
class ImportContext:
    """Mutable state of one import run."""
    batch_id: str
    file_name: str
    preview: bool
    clear_tables: bool
    actor_id: Any = None
    registry: NaturalKeyRegistry = field(default_factory=NaturalKeyRegistry)
    error_log: ErrorLogBuffer | None = None
    sheets: dict[str, SheetOutcome] = field(default_factory=dict)
    warnings: list[dict[str, str]] = field(default_factory=list)
    clear_requested: set[str] = field(default_factory=set)
    cleared_tables: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_monotonic: float = field(default_factory=time.monotonic)

    @property
    def effective_clear(self) -> bool:
        """Table clearing is only honored in commit mode."""
        return self.clear_tables and not self.preview

    def log_error(self, sheet: str, row: int, error_type: str, message: str) -> None:
        if self.error_log is None:
            return
        self.error_log.append(
            ErrorRecord.create(
                file=self.file_name,
                sheet=sheet,
                row=row,
                error_type=error_type,
                message=message,
                batch_id=self.batch_id,
            )
        )


def check_upload(file_name: str | None, size: int, limits: ImportLimits | None = None) -> None:
    """Reject uploads that are not .xlsx files or exceed the size limit."""
    limits = limits or ImportLimits()
    if not file_name or not file_name.lower().endswith(".xlsx"):
        raise ImportFailure("Only .xlsx workbooks are accepted.", details={"file_name": file_name})
    if size <= 0:
        raise ImportFailure("The uploaded file is empty.", details={"file_name": file_name})
    if size > limits.max_file_size_bytes:
        max_mb = limits.max_file_size_bytes / (1024 * 1024)
        raise ImportFailure(
            f"The file exceeds the maximum size of {max_mb:g} MB.",
            status=413,
            details={"size": size, "max_file_size_bytes": limits.max_file_size_bytes},
        )


def template_info(limits: ImportLimits | None = None) -> dict[str, Any]:
    limits = limits or ImportLimits()
    return {
        "template_version": TEMPLATE_VERSION,
        "template_path": template_path(TEMPLATE_VERSION),
        "max_file_size_bytes": limits.max_file_size_bytes,
        "max_asset_rows": limits.max_asset_rows,
        "sheets": [
            {
                "name": d.name,
                "label": d.label,
                "required": d.required,
                "mandatory_columns": list(d.mandatory_columns),
                "optional_columns": list(d.optional_columns),
            }
            for d in (SHEET_DEFINITIONS[name] for name in SHEET_SEQUENCE)
        ],
    }


def validation_status(outcome: SheetOutcome) -> str:
    if outcome.failed > 0:
        return SheetStatus.INVALID
    if outcome.processed > 0:
        return SheetStatus.VALIDATED_WITH_SKIPS if outcome.skipped > 0 else SheetStatus.VALIDATED
    if outcome.skipped > 0:
        return SheetStatus.SKIPPED
    return SheetStatus.EMPTY


def _check_headers(definition: SheetDefinition, sheet: SheetData, outcome: SheetOutcome) -> None:
    present = sheet.header_keys
    missing = [c for c in definition.mandatory_columns if c not in present]
    if missing:
        raise ImportFailure(
            f'Sheet "{definition.name}" is missing mandatory columns: {", ".join(missing)}.',
            details={"sheet": definition.name, "columns": missing},
        )
    missing_optional = [c for c in definition.optional_columns if c not in present]
    if missing_optional:
        outcome.warnings.append(f"Optional columns missing: {', '.join(missing_optional)}")


def validate_sheet(context: ImportContext, definition: SheetDefinition, sheet: SheetData) -> SheetOutcome:
    """Validate every row of one sheet and register accepted rows as pending."""
    name = definition.name
    outcome = SheetOutcome(sheet=name, label=definition.label, present=sheet.present)

    if not sheet.present:
        if definition.required:
            raise ImportFailure(
                f'Sheet "{name}" is required by the template.', details={"sheet": name}
            )
        message = f'Sheet "{name}" is not present; skipped.'
        outcome.status = SheetStatus.SKIPPED
        outcome.warnings.append(message)
        context.warnings.append({"sheet": name, "message": message})
        return outcome

    if context.clear_tables:
        context.clear_requested.add(name)
        if context.effective_clear:
            # rows already stored for this kind are about to be deleted
            context.registry.clear(name)

    _check_headers(definition, sheet, outcome)

    try:
        kind = kind_for(name)
    except KeyError as e:
        raise ImportFailure(f'No processor exists for sheet "{name}".', details={"sheet": name}) from e

    seen: set[str] = set()
    for row in sheet.rows:
        check = kind.validate_row(row.values, context.registry)
        key = kind.natural_key(check.data)
        if key and key in seen:
            check.errors.append(f"Duplicate key within sheet: {key}.")
            outcome.duplicates.append(DuplicateRecord(row=row.row_number, key=key, source=DuplicateSource.WORKSHEET))
        if key:
            seen.add(key)

        if check.errors:
            outcome.failed += 1
            outcome.errors.append(RowErrorEntry(row=row.row_number, messages=tuple(check.errors)))
            outcome.rows.append(
                RowOutcome(
                    row_number=row.row_number,
                    key=key,
                    status=RowStatus.FAILED,
                    data=check.data,
                    warnings=check.warnings,
                    errors=check.errors,
                )
            )
            context.log_error(name, row.row_number, ROW_ERROR_TYPE, " ".join(check.errors))
            continue

        # a clear request shows the run as it would look after the DELETE,
        # in preview too (preview keeps the stored rows for reference checks)
        if key and not context.clear_tables and context.registry.is_persisted(name, key):
            outcome.skipped += 1
            outcome.duplicates.append(DuplicateRecord(row=row.row_number, key=key, source=DuplicateSource.DATABASE))
            outcome.rows.append(
                RowOutcome(
                    row_number=row.row_number,
                    key=key,
                    status=RowStatus.DUPLICATE,
                    data=check.data,
                    warnings=check.warnings,
                )
            )
            continue

        outcome.rows.append(
            RowOutcome(
                row_number=row.row_number,
                key=key,
                status=RowStatus.PENDING,
                data=check.data,
                warnings=check.warnings,
            )
        )
        outcome.processed += 1
        for message in check.warnings:
            outcome.warnings.append(f"Row {row.row_number}: {message}")
        context.registry.register_pending(name, key, check.data)

    outcome.status = validation_status(outcome)
    logger.info(
        "sheet=%s status=%s processed=%d failed=%d skipped=%d",
        name,
        outcome.status,
        outcome.processed,
        outcome.failed,
        outcome.skipped,
    )
    return outcome


def enforce_asset_ceiling(context: ImportContext, max_asset_rows: int) -> None:
    assets = context.sheets.get(ASSETS_SHEET)
    if assets is None:
        return
    accepted = len(assets.accepted_rows)
    if accepted > max_asset_rows:
        raise ImportFailure(
            f"The workbook exceeds the limit of {max_asset_rows} assets.",
            details={"sheet": ASSETS_SHEET, "rows": accepted, "max_asset_rows": max_asset_rows},
        )


def mark_validated(context: ImportContext) -> None:
    for outcome in context.sheets.values():
        for row in outcome.rows:
            if row.status == RowStatus.PENDING:
                row.status = RowStatus.VALIDATED


def finalize(context: ImportContext) -> ImportReport:
    """Freeze the run into an ImportReport (totals, timing, cleared tables)."""
    sheets = {name: context.sheets[name] for name in SHEET_SEQUENCE if name in context.sheets}
    duration_ms = int((time.monotonic() - context.started_monotonic) * 1000)
    return ImportReport(
        batch_id=context.batch_id,
        template_version=TEMPLATE_VERSION,
        preview=context.preview,
        clear_tables=context.clear_tables,
        cleared_tables=list(context.cleared_tables) if context.effective_clear else [],
        file_name=context.file_name,
        totals=ImportTotals.from_sheets(list(sheets.values())),
        warnings=list(context.warnings),
        sheets=sheets,
        started_at=context.started_at,
        completed_at=datetime.now(UTC),
        duration_ms=duration_ms,
    )


def _preload(cursor: Any, registry: NaturalKeyRegistry) -> None:
    try:
        registry.load(cursor, ENTITY_KINDS)
    except Exception as e:
        raise ImportFailure("Could not load existing records.", status=500, details={"message": str(e)}) from e


def _validate_workbook(payload: bytes, context: ImportContext) -> None:
    try:
        frames = read_workbook(payload, target_sheets=SHEET_SEQUENCE)
    except WorkbookReadError as e:
        raise ImportFailure("The workbook could not be read.", details={"message": str(e)}) from e

    with ProgressTracker(len(SHEET_SEQUENCE), description="Validating sheets") as progress:
        for name in SHEET_SEQUENCE:
            progress.start_sheet(name)
            sheet = extract_sheet(frames, name)
            outcome = validate_sheet(context, SHEET_DEFINITIONS[name], sheet)
            context.sheets[name] = outcome
            progress.finish_sheet(status=outcome.status)


def _record_failure(context: ImportContext, failure: ImportFailure) -> None:
    details = failure.details or {}
    sheet = details.get("sheet") or FILE_LEVEL_SHEET
    row = details.get("row")
    context.log_error(
        sheet,
        row if isinstance(row, int) else UNKNOWN_ROW,
        FAILURE_ERROR_TYPE,
        failure.message if "message" not in details else f"{failure.message} {details['message']}",
    )


def _flush_error_log(error_log: ErrorLogBuffer) -> None:
    try:
        path = error_log.flush()
    except OSError:
        logger.exception("could not write error log dir=%s", error_log.directory)
        return
    if path is not None:
        logger.info("error log written path=%s", path)


def run_asset_import(
    payload: bytes,
    *,
    cursor: Any,
    file_name: str,
    actor_id: Any = None,
    preview: bool = True,
    clear_tables: bool = False,
    config: ImportConfig | None = None,
    error_log: ErrorLogBuffer | None = None,
    authorize: Callable[[Any], bool] | None = None,
    batch_id_factory: Callable[[], Any] | None = None,
) -> ImportReport:
    """Validate a workbook and, unless previewing, commit it.

    Args:
        payload: workbook bytes (.xlsx)
        cursor: psycopg2 cursor on a connection in autocommit mode; the
            engine issues BEGIN/COMMIT itself. None = mock mode (preview only,
            no stored records are consulted)
        file_name: original file name, stamped on the report and audit rows
        actor_id: written to created_by/updated_by and imports_log.requested_by
        preview: validate only (default)
        clear_tables: delete stored rows of every sheet present in the
            workbook before inserting; ignored in preview
        config: limits and error log directory (defaults when None)
        error_log: JSON Lines buffer; one is created under
            ``config.error_log_dir`` when None
        authorize: capability check called with actor_id before any work
        batch_id_factory: batch id generator (uuid4 by default)

    Returns:
        ImportReport for the run.

    Raises:
        ImportFailure: structural failure; nothing was committed.
        AuditLogError: data step finished but imports_log rows could not be
            written; ``.report`` holds the report.
    """
    config = config or ImportConfig()
    if authorize is not None and not authorize(actor_id):
        raise ImportFailure("Not allowed to import assets.", status=403)

    if error_log is None:
        error_log = ErrorLogBuffer(config.error_log_dir)
    batch_id = str((batch_id_factory or uuid.uuid4)())
    context = ImportContext(
        batch_id=batch_id,
        file_name=file_name,
        preview=preview,
        clear_tables=bool(clear_tables),
        actor_id=actor_id,
        error_log=error_log,
    )
    logger.info(
        "import started batch=%s file=%s mode=%s clear_tables=%s",
        batch_id,
        file_name,
        "preview" if preview else "commit",
        context.clear_tables,
    )

    try:
        if not payload or not isinstance(payload, (bytes, bytearray)):
            raise ImportFailure("Invalid workbook file.")
        if not preview and cursor is None:
            raise ImportFailure("Commit mode requires a database connection.", status=503)

        if cursor is not None:
            _preload(cursor, context.registry)
        _validate_workbook(bytes(payload), context)
        enforce_asset_ceiling(context, config.limits.max_asset_rows)

        if preview:
            mark_validated(context)
        else:
            persist(cursor, context)

        report = finalize(context)
        if cursor is not None:
            persist_logs(cursor, report, requested_by=actor_id, clear_requested=context.clear_requested)
        else:
            logger.debug("mock mode: imports_log not written batch=%s", batch_id)
    except ImportFailure as e:
        _record_failure(context, e)
        logger.error("import failed batch=%s status=%d: %s", batch_id, e.status, e.message)
        raise
    finally:
        _flush_error_log(error_log)

    return report
