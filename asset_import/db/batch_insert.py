from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from psycopg2 import errorcodes
from psycopg2.extras import Json, execute_values

"""DB helpers for the asset import engine (psycopg2).

- insert_row: single-row INSERT ... RETURNING used by the committer, so each
  inserted id can be fed back into the natural-key registry right away.
- batch_insert: execute_values batch INSERT used for imports_log rows.
- transaction / savepoint: explicit BEGIN/COMMIT/ROLLBACK on the caller's
  cursor; per-row savepoints let a unique violation be skipped without
  aborting the surrounding transaction.

Table and column names are trusted identifiers from the sheet template,
never from workbook content. Values always go through driver placeholders.
"""

__all__ = [
    "BatchInsertError",
    "UniqueViolationError",
    "BatchMetrics",
    "InsertResult",
    "adapt_value",
    "batch_insert",
    "insert_row",
    "delete_all",
    "fetch_dicts",
    "transaction",
    "savepoint",
]

logger = logging.getLogger(__name__)


class BatchInsertError(Exception):
    def __init__(self, message: str, *, pgcode: str | None = None) -> None:
        super().__init__(message)
        self.pgcode = pgcode


class UniqueViolationError(BatchInsertError):
    """INSERT hit a unique constraint (SQLSTATE 23505)."""


@dataclass(frozen=True)
class BatchMetrics:
    """Timing of one batch insert statement."""
    batch_size: int
    elapsed_seconds: float


@dataclass(frozen=True)
class InsertResult:
    inserted_rows: int


def _json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, default=str)


def adapt_value(value: Any) -> Any:
    """Wrap dict/list values so psycopg2 sends them as json/jsonb."""
    if isinstance(value, (dict, list)):
        return Json(value, dumps=_json_dumps)
    return value


def _wrap_driver_error(e: Exception, context: str) -> BatchInsertError:
    pgcode = getattr(e, "pgcode", None)
    if pgcode == errorcodes.UNIQUE_VIOLATION:
        return UniqueViolationError(f"{context}: {e}", pgcode=pgcode)
    return BatchInsertError(f"{context}: {e}", pgcode=pgcode)


def fetch_dicts(cursor: Any) -> list[dict[str, Any]]:
    """Fetch all rows of the last query as column-name dicts."""
    if not getattr(cursor, "description", None):
        return []
    names = [d[0] for d in cursor.description]
    return [dict(zip(names, row, strict=False)) for row in cursor.fetchall()]


def insert_row(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    values: Sequence[Any],
    returning: Sequence[str] = ("id",),
) -> dict[str, Any]:
    """INSERT one row and return the RETURNING columns as a dict.

    Raises UniqueViolationError on duplicate keys, BatchInsertError otherwise.
    """
    cols_sql = ", ".join(f'"{c}"' for c in columns)
    placeholders = ", ".join(["%s"] * len(columns))
    sql = f"INSERT INTO {table} ({cols_sql}) VALUES ({placeholders})"
    if returning:
        sql += " RETURNING " + ", ".join(returning)
    try:
        cursor.execute(sql, [adapt_value(v) for v in values])
        row = cursor.fetchone() if returning else None
    except Exception as e:
        raise _wrap_driver_error(e, f"insert into {table} failed") from e
    if not returning:
        return {}
    if row is None:
        raise BatchInsertError(f"insert into {table} returned no row")
    return dict(zip(returning, row, strict=False))


def delete_all(cursor: Any, table: str) -> int:
    try:
        cursor.execute(f"DELETE FROM {table}")
    except Exception as e:
        raise _wrap_driver_error(e, f"clearing {table} failed") from e
    return max(getattr(cursor, "rowcount", 0) or 0, 0)


def batch_insert(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    page_size: int = 1000,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> InsertResult:
    """Perform batched INSERT using psycopg2.extras.execute_values.

    Parameters
    ----------
    cursor: psycopg2 cursor
    table: target table (trusted identifier)
    columns: insert columns
    rows: row sequences; dict/list cells are sent as JSON
    page_size: execute_values page size
    metrics_callback: receives BatchMetrics after the statement ran.
        Not invoked when ``rows`` is empty (the function returns early).
    """
    rows_list = [[adapt_value(v) for v in row] for row in rows]
    if not rows_list:
        return InsertResult(inserted_rows=0)

    cols_sql = ",".join(f'"{c}"' for c in columns)
    base_sql = f"INSERT INTO {table} ({cols_sql}) VALUES %s"

    start_time = time.perf_counter()
    try:
        execute_values(cursor, base_sql, rows_list, page_size=page_size)
    except Exception as e:
        raise _wrap_driver_error(e, f"batch insert into {table} failed") from e
    finally:
        if metrics_callback is not None:
            metrics_callback(
                BatchMetrics(batch_size=len(rows_list), elapsed_seconds=time.perf_counter() - start_time)
            )

    return InsertResult(inserted_rows=len(rows_list))


@contextmanager
def transaction(cursor: Any) -> Iterator[Any]:
    """BEGIN ... COMMIT, or ROLLBACK when the block raises."""
    cursor.execute("BEGIN")
    try:
        yield cursor
    except BaseException:
        try:
            cursor.execute("ROLLBACK")
        except Exception:
            logger.exception("rollback failed")
        raise
    cursor.execute("COMMIT")


@contextmanager
def savepoint(cursor: Any, name: str = "import_row") -> Iterator[Any]:
    cursor.execute(f"SAVEPOINT {name}")
    try:
        yield cursor
    except BaseException:
        cursor.execute(f"ROLLBACK TO SAVEPOINT {name}")
        raise
    cursor.execute(f"RELEASE SAVEPOINT {name}")
