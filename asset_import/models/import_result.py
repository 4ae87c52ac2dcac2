from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any

"""Report models for one import run (batch).

RowOutcome and SheetOutcome are mutable: the orchestrator relabels pending
rows to validated (preview) and the committer moves them to inserted or
duplicate (commit). ImportReport is assembled once the run is finalized.

Row statuses:  pending -> validated | inserted | duplicate, or failed.
Sheet statuses: skipped, empty, invalid, validated, validated_with_skips,
committed, committed_with_skips.
"""

__all__ = [
    "RowStatus",
    "SheetStatus",
    "DuplicateSource",
    "RowOutcome",
    "DuplicateRecord",
    "RowErrorEntry",
    "SheetOutcome",
    "ImportTotals",
    "ImportReport",
    "jsonable",
]


class RowStatus:
    PENDING = "pending"
    VALIDATED = "validated"
    INSERTED = "inserted"
    DUPLICATE = "duplicate"
    FAILED = "failed"


class SheetStatus:
    SKIPPED = "skipped"
    EMPTY = "empty"
    INVALID = "invalid"
    VALIDATED = "validated"
    VALIDATED_WITH_SKIPS = "validated_with_skips"
    COMMITTED = "committed"
    COMMITTED_WITH_SKIPS = "committed_with_skips"


class DuplicateSource:
    WORKSHEET = "worksheet"
    DATABASE = "database"


def jsonable(value: Any) -> Any:
    """Convert normalized cell values to JSON-friendly primitives."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(v) for v in value]
    return value


@dataclass
class RowOutcome:
    row_number: int  # spreadsheet row as a human sees it (header = 1)
    key: str | None
    status: str
    data: dict[str, Any]
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    record_id: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "row_number": self.row_number,
            "key": self.key,
            "status": self.status,
            "data": jsonable(self.data),
            "warnings": list(self.warnings),
            "errors": list(self.errors),
            "record_id": jsonable(self.record_id),
        }


@dataclass(frozen=True)
class DuplicateRecord:
    row: int
    key: str
    source: str

    def to_dict(self) -> dict[str, Any]:
        return {"row": self.row, "key": self.key, "source": self.source}


@dataclass(frozen=True)
class RowErrorEntry:
    row: int
    messages: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"row": self.row, "messages": list(self.messages)}


@dataclass
class SheetOutcome:
    sheet: str
    label: str
    present: bool
    status: str = RowStatus.PENDING
    processed: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    warnings: list[str] = field(default_factory=list)
    errors: list[RowErrorEntry] = field(default_factory=list)
    duplicates: list[DuplicateRecord] = field(default_factory=list)
    rows: list[RowOutcome] = field(default_factory=list)
    cleared: bool = False

    @property
    def accepted_rows(self) -> list[RowOutcome]:
        """Rows that passed validation (pending/validated/inserted/duplicate)."""
        return [r for r in self.rows if r.status != RowStatus.FAILED]

    def totals(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "inserted": self.inserted,
            "updated": self.updated,
            "failed": self.failed,
            "skipped": self.skipped,
            "duplicates": len(self.duplicates),
            "warnings": len(self.warnings),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "sheet": self.sheet,
            "label": self.label,
            "present": self.present,
            "status": self.status,
            "cleared": self.cleared,
            **{k: v for k, v in self.totals().items() if k not in ("duplicates", "warnings")},
            "warnings": list(self.warnings),
            "errors": [e.to_dict() for e in self.errors],
            "duplicates": [d.to_dict() for d in self.duplicates],
            "rows": [r.to_dict() for r in self.rows],
        }


@dataclass(frozen=True)
class ImportTotals:
    processed: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    duplicates: int = 0

    @classmethod
    def from_sheets(cls, sheets: list[SheetOutcome]) -> ImportTotals:
        return cls(
            processed=sum(s.processed for s in sheets),
            inserted=sum(s.inserted for s in sheets),
            updated=sum(s.updated for s in sheets),
            skipped=sum(s.skipped for s in sheets),
            failed=sum(s.failed for s in sheets),
            duplicates=sum(len(s.duplicates) for s in sheets),
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "inserted": self.inserted,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "duplicates": self.duplicates,
        }


@dataclass(frozen=True)
class ImportReport:
    """Final structured output of one import run."""
    batch_id: str
    template_version: str
    preview: bool
    clear_tables: bool
    cleared_tables: list[str]
    file_name: str
    totals: ImportTotals
    warnings: list[dict[str, str]]
    sheets: dict[str, SheetOutcome]
    started_at: datetime
    completed_at: datetime
    duration_ms: int

    @property
    def mode(self) -> str:
        return "preview" if self.preview else "commit"

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "template_version": self.template_version,
            "preview": self.preview,
            "mode": self.mode,
            "clear_tables": self.clear_tables,
            "cleared_tables": list(self.cleared_tables),
            "file_name": self.file_name,
            "totals": self.totals.to_dict(),
            "warnings": list(self.warnings),
            "sheets": {name: sheet.to_dict() for name, sheet in self.sheets.items()},
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "duration_ms": self.duration_ms,
        }
