from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the JSON Lines error log.

Every row validation error and every fatal import failure is written as one
record. row=-1 is the sentinel for sheet-level and file-level records where
no single spreadsheet row applies.
"""

__all__ = [
    "ErrorRecord",
    "UNKNOWN_ROW",
    "FILE_LEVEL_SHEET",
]

UNKNOWN_ROW = -1
FILE_LEVEL_SHEET = "<FILE_LEVEL>"


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: Workbook file name being imported
        sheet: Sheet name, or <FILE_LEVEL>
        row: Spreadsheet row number. -1 when no single row applies
        error_type: Error classification in UPPER_SNAKE_CASE format
        message: Human-readable description
        batch_id: Import batch the record belongs to, when one was created
    """
    timestamp: str
    file: str
    sheet: str
    row: int
    error_type: str
    message: str
    batch_id: str | None = None

    @staticmethod
    def create(
        file: str,
        sheet: str,
        row: int,
        error_type: str,
        message: str,
        batch_id: str | None = None,
    ) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            file=file,
            sheet=sheet,
            row=row,
            error_type=error_type,
            message=message,
            batch_id=batch_id,
        )

    def to_json_line(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)
