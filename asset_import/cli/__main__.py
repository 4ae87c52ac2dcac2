from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any

import psycopg2
from dotenv import load_dotenv

from asset_import.config.loader import DEFAULT_CONFIG_PATH, ConfigError, build_dsn, load_config
from asset_import.excel.reader import WorkbookReadError, extract_sheet, read_workbook
from asset_import.logging.error_log import ErrorLogBuffer
from asset_import.logging.init import log_summary, setup_logging
from asset_import.models.config_models import DEFAULT_ERROR_LOG_DIR, ImportConfig
from asset_import.models.error_record import FILE_LEVEL_SHEET, UNKNOWN_ROW, ErrorRecord
from asset_import.models.errors import AuditLogError, ImportFailure
from asset_import.models.import_result import ImportReport, jsonable
from asset_import.models.sheet_definitions import SHEET_SEQUENCE
from asset_import.services.normalizers import resolve_flag
from asset_import.services.orchestrator import check_upload, run_asset_import
from asset_import.services.summary import render_summary_line

"""CLI entrypoint.

Flow:
- load .env (python-dotenv, overriding the process environment)
- load and validate config/import.yml
- check the workbook (extension, size)
- connect (autocommit; the engine issues BEGIN/COMMIT) unless
  DISABLE_DB_CONNECT=1, falling back to mock mode when the connection fails
- run the import, optionally write the JSON report, print SUMMARY

Exit codes: 0 no failed rows, 2 finished with failed rows, 1 fatal.
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

INSPECT_SAMPLE_ROWS = 3


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env so its connection settings win over the process environment."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Bulk asset import (preview or commit)")
    p.add_argument("workbook", type=Path, help="Path to the .xlsx workbook")
    p.add_argument("--commit", action="store_true", help="Persist rows (default is preview)")
    p.add_argument("--preview", default=None, help="Preview flag (true/false/si/no...); overrides --commit")
    p.add_argument("--clear-tables", action="store_true", help="Clear tables of present sheets before commit")
    p.add_argument("--actor", default=None, help="Actor id written to created_by/updated_by")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Config YAML path")
    p.add_argument("--report", type=Path, default=None, help="Write the JSON report to this path")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--inspect-data", action="store_true", help="Print sheet headers & first rows then exit")
    return p.parse_args(argv)


def _record_fatal(directory: str, file_name: str, error_type: str, message: str) -> None:
    buffer = ErrorLogBuffer(directory)
    buffer.append(ErrorRecord.create(file_name, FILE_LEVEL_SHEET, UNKNOWN_ROW, error_type, message))
    buffer.flush()


def _inspect_data(payload: bytes) -> int:
    try:
        frames = read_workbook(payload)
    except WorkbookReadError as e:
        print(f"inspect: {e}")
        return EXIT_FATAL
    for name in SHEET_SEQUENCE:
        sheet = extract_sheet(frames, name)
        if not sheet.present:
            print(f"SHEET: {name} (absent)")
            continue
        print(f"SHEET: {name} cols={[h.key for h in sheet.headers if h.key]} rows={len(sheet.rows)}")
        for row in sheet.rows[:INSPECT_SAMPLE_ROWS]:
            print(f"    row {row.row_number}: {json.dumps(jsonable(row.values), ensure_ascii=False, default=str)}")
    unknown = sorted(set(frames) - set(SHEET_SEQUENCE))
    if unknown:
        print(f"ignored sheets: {', '.join(unknown)}")
    return EXIT_SUCCESS_ALL


def _connect(cfg: ImportConfig) -> Any:
    conn = psycopg2.connect(build_dsn(cfg.database))
    # explicit BEGIN/COMMIT are issued by the engine
    conn.autocommit = True
    return conn


def _write_report(path: Path, report: ImportReport) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(report.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # None only: an explicit [] must not pick up pytest's own arguments
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    if args.debug:
        logger = setup_logging(debug=True)
        logger.debug("debug mode enabled")

    _load_env_file(Path(".env"), override=True)

    workbook: Path = args.workbook
    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        _record_fatal(DEFAULT_ERROR_LOG_DIR, workbook.name, "CONFIG_ERROR", str(e))
        return EXIT_FATAL

    if not workbook.is_file():
        logger.error(f"workbook not found: {workbook}")
        _record_fatal(cfg.error_log_dir, workbook.name, "FILE_NOT_FOUND", f"workbook not found: {workbook}")
        return EXIT_FATAL

    try:
        check_upload(workbook.name, workbook.stat().st_size, cfg.limits)
    except ImportFailure as e:
        logger.error(f"upload: {e.message}")
        _record_fatal(cfg.error_log_dir, workbook.name, "UPLOAD_REJECTED", e.message)
        return EXIT_FATAL

    payload = workbook.read_bytes()
    if args.inspect_data:
        return _inspect_data(payload)

    preview = resolve_flag(args.preview, not args.commit)

    conn = None
    if os.getenv("DISABLE_DB_CONNECT") == "1":
        logger.debug("DB connect disabled via DISABLE_DB_CONNECT=1 -> mock mode")
    else:
        try:
            conn = _connect(cfg)
        except psycopg2.Error as e:
            logger.warning(f"DB connection failed -> mock mode: {e}")

    logger.info(f"mode={'live' if conn is not None else 'mock'} file={workbook.name}")
    try:
        cursor = conn.cursor() if conn is not None else None
        report = run_asset_import(
            payload,
            cursor=cursor,
            file_name=workbook.name,
            actor_id=args.actor,
            preview=preview,
            clear_tables=args.clear_tables,
            config=cfg,
        )
    except AuditLogError as e:
        logger.error(f"audit log: {e.message}")
        if args.report is not None:
            _write_report(args.report, e.report)
        return EXIT_FATAL
    except ImportFailure as e:
        logger.error(f"import: {e.message}")
        if e.details:
            logger.error(f"details: {json.dumps(e.details, ensure_ascii=False, default=str)}")
        return EXIT_FATAL
    finally:
        if conn is not None:
            conn.close()

    for warning in report.warnings:
        logger.warning(f"{warning['sheet']}: {warning['message']}")
    for sheet in report.sheets.values():
        for entry in sheet.errors:
            logger.debug(f"{sheet.sheet} row {entry.row}: {' '.join(entry.messages)}")

    if args.report is not None:
        _write_report(args.report, report)
        logger.info(f"report written: {args.report}")

    # log_summary adds the "SUMMARY " label itself
    log_summary(render_summary_line(report)[len("SUMMARY "):])

    if report.totals.failed > 0:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
