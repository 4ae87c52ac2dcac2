from __future__ import annotations

from ..models.import_result import ImportReport

"""SUMMARY line rendering for one import run.

Format:

    SUMMARY batch=<id> mode=<preview|commit> sheets=<n> processed=<n>
    inserted=<n> skipped=<n> failed=<n> duplicates=<n> elapsed_sec=<s>

(one line; wrapped here for readability). ``sheets`` counts the sheets
present in the workbook.
"""

__all__ = [
    "format_elapsed",
    "render_summary_line",
]


def format_elapsed(seconds: float) -> str:
    """Render seconds without scientific notation or a trailing '.0'."""
    if seconds == 0:
        return "0"
    if seconds == int(seconds):
        return str(int(seconds))
    if seconds < 0.01:
        return f"{seconds:.6f}".rstrip("0").rstrip(".")
    return f"{seconds:.3f}".rstrip("0").rstrip(".")


def render_summary_line(report: ImportReport) -> str:
    """Render the SUMMARY line for a finished report.

    Example output:
        SUMMARY batch=2b0c... mode=preview sheets=4 processed=4 inserted=0
        skipped=0 failed=0 duplicates=0 elapsed_sec=0.12
    """
    totals = report.totals
    present = sum(1 for sheet in report.sheets.values() if sheet.present)
    return (
        f"SUMMARY batch={report.batch_id} "
        f"mode={report.mode} "
        f"sheets={present} "
        f"processed={totals.processed} "
        f"inserted={totals.inserted} "
        f"skipped={totals.skipped} "
        f"failed={totals.failed} "
        f"duplicates={totals.duplicates} "
        f"elapsed_sec={format_elapsed(report.duration_ms / 1000)}"
    )
