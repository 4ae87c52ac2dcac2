from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ..db.batch_insert import (
    BatchInsertError,
    UniqueViolationError,
    delete_all,
    savepoint,
    transaction,
)
from ..models.errors import ImportFailure
from ..models.import_result import DuplicateRecord, DuplicateSource, RowStatus, SheetOutcome, SheetStatus
from ..models.sheet_definitions import SHEET_DEFINITIONS, SHEET_SEQUENCE
from .entity_kinds import UnresolvedReferenceError, kind_for
from .progress import ProgressTracker

if TYPE_CHECKING:  # pragma: no cover
    from .orchestrator import ImportContext

"""Persistence committer: writes validated rows inside one transaction.

Order of work:

1. BEGIN
2. DELETE FROM the tables whose sheets were marked for clearing, children
   first (reverse dependency order)
3. per sheet in dependency order, INSERT every row still ``pending``; each
   insert runs under a SAVEPOINT so a unique violation only rolls back that
   row, which is then reported as a database duplicate
4. COMMIT, or ROLLBACK on any other failure (ImportFailure with details)
"""

__all__ = [
    "persist",
    "sheets_to_clear",
    "clear_tables",
    "commit_status",
]

logger = logging.getLogger(__name__)


def sheets_to_clear(context: ImportContext) -> list[str]:
    """Sheets whose tables get cleared, in dependency order."""
    if not context.effective_clear:
        return []
    return [name for name in SHEET_SEQUENCE if name in context.clear_requested]


def clear_tables(cursor: Any, context: ImportContext) -> list[str]:
    """Delete rows of the marked tables, children before parents."""
    targets = sheets_to_clear(context)
    for sheet_name in reversed(targets):
        table = SHEET_DEFINITIONS[sheet_name].table
        try:
            removed = delete_all(cursor, table)
        except BatchInsertError as e:
            raise ImportFailure(
                f'Could not clear table "{table}".',
                details={"sheet": sheet_name, "row": None, "message": str(e)},
            ) from e
        context.registry.clear(sheet_name)
        outcome = context.sheets.get(sheet_name)
        if outcome is not None:
            outcome.cleared = True
        logger.info("cleared table=%s rows=%d", table, removed)
    return targets


def commit_status(outcome: SheetOutcome) -> str:
    if outcome.inserted > 0:
        return SheetStatus.COMMITTED_WITH_SKIPS if outcome.skipped > 0 else SheetStatus.COMMITTED
    # failed rows keep the sheet invalid even when every other row was a duplicate
    if outcome.skipped > 0 and outcome.failed == 0:
        return SheetStatus.SKIPPED
    return outcome.status


def _persist_sheet(cursor: Any, context: ImportContext, outcome: SheetOutcome) -> None:
    kind = kind_for(outcome.sheet)
    for row in outcome.rows:
        if row.status != RowStatus.PENDING:
            continue
        try:
            with savepoint(cursor):
                record = kind.insert_row(cursor, row.data, context.registry, context.actor_id)
        except UniqueViolationError as e:
            logger.debug("sheet=%s row=%d unique violation: %s", outcome.sheet, row.row_number, e)
            row.status = RowStatus.DUPLICATE
            outcome.skipped += 1
            outcome.duplicates.append(
                DuplicateRecord(row=row.row_number, key=row.key or "", source=DuplicateSource.DATABASE)
            )
            continue
        except (BatchInsertError, UnresolvedReferenceError) as e:
            raise ImportFailure(
                f'Could not save sheet "{outcome.sheet}" at row {row.row_number}.',
                status=500 if isinstance(e, BatchInsertError) else 400,
                details={"sheet": outcome.sheet, "row": row.row_number, "message": str(e)},
            ) from e

        row.status = RowStatus.INSERTED
        row.record_id = record.get("id")
        outcome.inserted += 1
        context.registry.register_inserted(outcome.sheet, kind.natural_key(record), record)

    outcome.status = commit_status(outcome)


def persist(cursor: Any, context: ImportContext) -> None:
    """Run the commit phase; every mutation is rolled back on failure."""
    present = [context.sheets[name] for name in SHEET_SEQUENCE if context.sheets[name].present]
    with transaction(cursor):
        context.cleared_tables = clear_tables(cursor, context)
        with ProgressTracker(len(present), description="Committing sheets") as progress:
            for outcome in present:
                progress.start_sheet(outcome.sheet)
                _persist_sheet(cursor, context, outcome)
                progress.finish_sheet(inserted=outcome.inserted, skipped=outcome.skipped)
    logger.info(
        "commit finished batch=%s inserted=%d cleared=%s",
        context.batch_id,
        sum(o.inserted for o in present),
        ",".join(context.cleared_tables) or "-",
    )
