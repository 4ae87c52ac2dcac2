# Shared pytest fixtures: in-memory PostgreSQL stand-in and workbook builder
from __future__ import annotations

import copy
import re
import uuid
from collections.abc import Callable
from io import BytesIO
from pathlib import Path
from typing import Any

import pandas as pd
import pytest

import asset_import.db.batch_insert as batch_insert_module
from asset_import.logging.init import reset_logging

UNIQUE_COLUMNS = {
    "depreciation_methods": "code",
    "asset_categories": "code",
    "asset_statuses": "code",
    "document_types": "code",
    "departments": "code",
    "cost_centers": "code",
    "locations": "code",
    "assets": "asset_tag",
}

# table -> [(column, target table, on delete)]
FOREIGN_KEYS = {
    "asset_categories": [("default_depreciation_method_id", "depreciation_methods", "SET NULL")],
    "departments": [("parent_id", "departments", "SET NULL")],
    "cost_centers": [("department_id", "departments", "SET NULL")],
    "locations": [("parent_id", "locations", "SET NULL")],
    "responsibles": [("department_id", "departments", "SET NULL")],
    "assets": [
        ("parent_asset_id", "assets", "SET NULL"),
        ("asset_category_id", "asset_categories", "RESTRICT"),
        ("asset_status_id", "asset_statuses", "RESTRICT"),
        ("depreciation_method_id", "depreciation_methods", "SET NULL"),
        ("provider_id", "providers", "SET NULL"),
        ("department_id", "departments", "SET NULL"),
        ("cost_center_id", "cost_centers", "SET NULL"),
        ("location_id", "locations", "SET NULL"),
        ("responsible_id", "responsibles", "SET NULL"),
    ],
}

NOT_NULL = {
    "assets": ("asset_tag", "name", "asset_category_id", "asset_status_id"),
    "responsibles": ("name",),
    "providers": ("name",),
    "imports_log": ("batch_id", "sheet_name", "file_name", "template_version"),
}

TABLES = (
    "depreciation_methods",
    "asset_categories",
    "asset_statuses",
    "document_types",
    "departments",
    "cost_centers",
    "locations",
    "responsibles",
    "providers",
    "assets",
    "imports_log",
)

_SELECT_RE = re.compile(r"^SELECT (?P<cols>.+) FROM (?P<table>\w+)$")
_INSERT_RE = re.compile(
    r"^INSERT INTO (?P<table>\w+) \((?P<cols>.+?)\) VALUES \((?P<values>[%s, ]+)\)(?: RETURNING (?P<ret>.+))?$"
)
_BATCH_INSERT_RE = re.compile(r"^INSERT INTO (?P<table>\w+) \((?P<cols>.+?)\) VALUES %s$")
_DELETE_RE = re.compile(r"^DELETE FROM (?P<table>\w+)$")
_SAVEPOINT_RE = re.compile(r"^(?P<op>SAVEPOINT|ROLLBACK TO SAVEPOINT|RELEASE SAVEPOINT) (?P<name>\w+)$")


class FakeDatabaseError(Exception):
    """Mimics psycopg2.Error: carries a SQLSTATE in ``pgcode``."""

    def __init__(self, message: str, pgcode: str) -> None:
        super().__init__(message)
        self.pgcode = pgcode


def _unwrap(value: Any) -> Any:
    # psycopg2.extras.Json keeps the wrapped object in .adapted
    return getattr(value, "adapted", value)


def _split_columns(raw: str) -> list[str]:
    return [c.strip().strip('"') for c in raw.split(",")]


class FakeDatabase:
    """Tables as lists of dicts with transaction and savepoint snapshots."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {t: [] for t in TABLES}
        self.statements: list[str] = []
        self.in_transaction = False
        self.commits = 0
        self.rollbacks = 0
        self._snapshot: dict[str, list[dict[str, Any]]] | None = None
        self._savepoints: dict[str, dict[str, list[dict[str, Any]]]] = {}
        # hook(table, row) -> Exception | None, consulted before every INSERT
        self.fail_insert: Callable[[str, dict[str, Any]], Exception | None] | None = None
        self.fail_batch_insert: Exception | None = None

    # -- helpers used by tests ---------------------------------------------
    def cursor(self) -> FakeCursor:
        return FakeCursor(self)

    def seed(self, table: str, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        stored = []
        for row in rows:
            stored.append(self.insert(table, dict(row)))
        return stored

    def rows(self, table: str) -> list[dict[str, Any]]:
        return list(self.tables[table])

    def count(self, table: str) -> int:
        return len(self.tables[table])

    def find(self, table: str, **criteria: Any) -> dict[str, Any] | None:
        for row in self.tables[table]:
            if all(row.get(k) == v for k, v in criteria.items()):
                return row
        return None

    def data_counts(self) -> dict[str, int]:
        return {t: len(rows) for t, rows in self.tables.items() if t != "imports_log"}

    # -- engine ---------------------------------------------------------------
    def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        if self.fail_insert is not None:
            error = self.fail_insert(table, row)
            if error is not None:
                raise error
        for column in NOT_NULL.get(table, ()):
            if row.get(column) is None:
                raise FakeDatabaseError(f'null value in column "{column}" of relation "{table}"', "23502")
        unique = UNIQUE_COLUMNS.get(table)
        if unique and any(r.get(unique) == row.get(unique) for r in self.tables[table]):
            raise FakeDatabaseError(
                f'duplicate key value violates unique constraint "{table}_{unique}_key"', "23505"
            )
        for column, target, _ in FOREIGN_KEYS.get(table, ()):
            value = row.get(column)
            if value is not None and not any(r["id"] == value for r in self.tables[target]):
                raise FakeDatabaseError(
                    f'insert or update on table "{table}" violates foreign key constraint on "{column}"', "23503"
                )
        row.setdefault("id", str(uuid.uuid4()))
        self.tables[table].append(row)
        return row

    def delete_all(self, table: str) -> int:
        for other, fks in FOREIGN_KEYS.items():
            if other == table:
                continue
            for column, target, on_delete in fks:
                if target != table:
                    continue
                referencing = [r for r in self.tables[other] if r.get(column) is not None]
                if not referencing:
                    continue
                if on_delete == "RESTRICT":
                    raise FakeDatabaseError(
                        f'update or delete on table "{table}" violates foreign key constraint from "{other}"',
                        "23503",
                    )
                for r in referencing:
                    r[column] = None
        removed = len(self.tables[table])
        self.tables[table] = []
        return removed

    def execute(self, cursor: FakeCursor, sql: str, params: Any = None) -> None:
        sql = " ".join(sql.split())
        self.statements.append(sql)
        cursor.description = None
        cursor._rows = []

        if sql == "BEGIN":
            self.in_transaction = True
            self._snapshot = copy.deepcopy(self.tables)
            self._savepoints = {}
            return
        if sql == "COMMIT":
            self.in_transaction = False
            self._snapshot = None
            self.commits += 1
            return
        if sql == "ROLLBACK":
            if self._snapshot is not None:
                self.tables = self._snapshot
            self.in_transaction = False
            self._snapshot = None
            self.rollbacks += 1
            return

        m = _SAVEPOINT_RE.match(sql)
        if m:
            name = m.group("name")
            if m.group("op") == "SAVEPOINT":
                self._savepoints[name] = copy.deepcopy(self.tables)
            elif m.group("op") == "ROLLBACK TO SAVEPOINT":
                self.tables = copy.deepcopy(self._savepoints[name])
            else:
                self._savepoints.pop(name, None)
            return

        m = _SELECT_RE.match(sql)
        if m:
            columns = _split_columns(m.group("cols"))
            cursor.description = [(c, None, None, None, None, None, None) for c in columns]
            cursor._rows = [tuple(r.get(c) for c in columns) for r in self.tables[m.group("table")]]
            return

        m = _INSERT_RE.match(sql)
        if m:
            columns = _split_columns(m.group("cols"))
            row = {c: _unwrap(v) for c, v in zip(columns, params, strict=True)}
            stored = self.insert(m.group("table"), row)
            cursor.rowcount = 1
            if m.group("ret"):
                returning = _split_columns(m.group("ret"))
                cursor.description = [(c, None, None, None, None, None, None) for c in returning]
                cursor._rows = [tuple(stored.get(c) for c in returning)]
            return

        m = _DELETE_RE.match(sql)
        if m:
            cursor.rowcount = self.delete_all(m.group("table"))
            return

        raise AssertionError(f"unexpected SQL: {sql}")

    def execute_values(self, cursor: FakeCursor, sql: str, rows: list[list[Any]], page_size: int = 100) -> None:
        self.statements.append(" ".join(sql.split()))
        if self.fail_batch_insert is not None:
            raise self.fail_batch_insert
        m = _BATCH_INSERT_RE.match(" ".join(sql.split()))
        assert m, f"unexpected batch SQL: {sql}"
        columns = _split_columns(m.group("cols"))
        for values in rows:
            self.insert(m.group("table"), {c: _unwrap(v) for c, v in zip(columns, values, strict=True)})


class FakeCursor:
    def __init__(self, db: FakeDatabase) -> None:
        self.db = db
        self.description: list[tuple[Any, ...]] | None = None
        self.rowcount = -1
        self._rows: list[tuple[Any, ...]] = []
        self.closed = False

    def execute(self, sql: str, params: Any = None) -> None:
        self.db.execute(self, sql, params)

    def fetchone(self) -> tuple[Any, ...] | None:
        return self._rows.pop(0) if self._rows else None

    def fetchall(self) -> list[tuple[Any, ...]]:
        rows, self._rows = self._rows, []
        return rows

    def close(self) -> None:
        self.closed = True


def build_workbook(sheets: dict[str, Any]) -> bytes:
    """Write {sheet name: list of row dicts | DataFrame} to .xlsx bytes."""
    buf = BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        for name, rows in sheets.items():
            df = rows if isinstance(rows, pd.DataFrame) else pd.DataFrame(rows)
            df.to_excel(writer, sheet_name=name, index=False)
    return buf.getvalue()


SCENARIO_SHEETS = {
    "depreciation_methods": [{"code": "DEP_X", "name": "Método X"}],
    "asset_categories": [
        {"code": "CAT_X", "name": "Categoría X", "default_depreciation_method_code": "DEP_X"}
    ],
    "asset_statuses": [{"code": "STS_X", "name": "Estado X"}],
    "assets": [
        {"asset_tag": "AST_X", "name": "Activo X", "asset_category_code": "CAT_X", "asset_status_code": "STS_X"}
    ],
}


@pytest.fixture(autouse=True)
def temp_workdir(monkeypatch, tmp_path: Path) -> Path:
    # error logs are written relative to the working directory
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("PGDSN", raising=False)
    yield tmp_path
    reset_logging()


@pytest.fixture()
def fake_db(monkeypatch) -> FakeDatabase:
    db = FakeDatabase()
    monkeypatch.setattr(batch_insert_module, "execute_values", db.execute_values)
    return db


@pytest.fixture()
def cursor(fake_db: FakeDatabase) -> FakeCursor:
    return fake_db.cursor()


@pytest.fixture()
def scenario_workbook() -> bytes:
    return build_workbook(SCENARIO_SHEETS)


@pytest.fixture()
def workbook_factory() -> Callable[[dict[str, Any]], bytes]:
    return build_workbook


@pytest.fixture()
def sample_config_yaml() -> str:
    return """database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
limits:
  max_file_size_bytes: 1048576
  max_asset_rows: 50
error_log_dir: ./logs
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    (temp_workdir / "config").mkdir(exist_ok=True)
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg
