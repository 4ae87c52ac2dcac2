from __future__ import annotations

from typing import Any

"""Structural failure types for the asset import engine.

ImportFailure aborts a whole run: no partial report is returned and no
mutation from the run stays committed. Row-level problems never use these
classes; they accumulate in the report instead.
"""

__all__ = [
    "ImportFailure",
    "AuditLogError",
]


class ImportFailure(Exception):
    """Fatal import error with an HTTP-like status and optional details."""

    def __init__(self, message: str, *, status: int = 400, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, "status": self.status, "details": self.details}


class AuditLogError(ImportFailure):
    """Raised when the imports_log rows could not be written.

    The finished report is attached so callers can still show what happened
    to the data itself.
    """

    def __init__(self, message: str, *, report: Any, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, status=500, details=details)
        self.report = report
