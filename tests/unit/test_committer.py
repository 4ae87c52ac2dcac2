from __future__ import annotations

import pytest

from asset_import.excel.reader import HeaderCell, SheetData, SheetRow
from asset_import.models.errors import ImportFailure
from asset_import.models.import_result import RowStatus, SheetOutcome, SheetStatus
from asset_import.models.sheet_definitions import SHEET_DEFINITIONS, SHEET_SEQUENCE
from asset_import.services.committer import commit_status, persist, sheets_to_clear
from asset_import.services.entity_kinds import ENTITY_KINDS
from asset_import.services.orchestrator import ImportContext, validate_sheet


def _sheet(name: str, rows: list[dict]) -> SheetData:
    columns = SHEET_DEFINITIONS[name].columns
    return SheetData(
        sheet_name=name,
        present=True,
        headers=[HeaderCell(i, c, c) for i, c in enumerate(columns)],
        rows=[SheetRow(i + 2, {c: r.get(c) for c in columns}) for i, r in enumerate(rows)],
    )


def build_context(cursor, sheets: dict[str, list[dict]], *, clear_tables=False) -> ImportContext:
    """Validate ``sheets`` for a commit run; absent sheets are skipped."""
    context = ImportContext(batch_id="b1", file_name="f.xlsx", preview=False, clear_tables=clear_tables)
    context.registry.load(cursor, ENTITY_KINDS)
    for name in SHEET_SEQUENCE:
        data = _sheet(name, sheets[name]) if name in sheets else SheetData(sheet_name=name, present=False)
        context.sheets[name] = validate_sheet(context, SHEET_DEFINITIONS[name], data)
    return context


ASSET = {"asset_tag": "AST-1", "name": "Laptop", "asset_category_code": "IT", "asset_status_code": "ON"}


@pytest.fixture()
def base_sheets():
    return {
        "asset_categories": [{"code": "IT", "name": "IT"}],
        "asset_statuses": [{"code": "ON", "name": "On"}],
        "assets": [dict(ASSET)],
    }


def test_persist_inserts_in_dependency_order_and_resolves_ids(fake_db, cursor, base_sheets):
    context = build_context(cursor, base_sheets)
    persist(cursor, context)

    category = fake_db.find("asset_categories", code="IT")
    asset = fake_db.find("assets", asset_tag="AST-1")
    assert asset["asset_category_id"] == category["id"]
    assert context.sheets["assets"].rows[0].status == RowStatus.INSERTED
    assert context.sheets["assets"].rows[0].record_id == asset["id"]
    assert context.sheets["assets"].status == SheetStatus.COMMITTED
    assert fake_db.commits == 1


def test_unique_violation_becomes_database_duplicate(fake_db, cursor, base_sheets):
    context = build_context(cursor, base_sheets)
    # a concurrent import stores the same tag after validation
    fake_db.seed("asset_categories", [{"code": "OTHER", "name": "x"}])
    fake_db.seed("asset_statuses", [{"code": "OTHER", "name": "x"}])
    fake_db.seed(
        "assets",
        [
            {
                "asset_tag": "AST-1",
                "name": "other",
                "asset_category_id": fake_db.find("asset_categories", code="OTHER")["id"],
                "asset_status_id": fake_db.find("asset_statuses", code="OTHER")["id"],
            }
        ],
    )
    persist(cursor, context)

    assets = context.sheets["assets"]
    assert assets.rows[0].status == RowStatus.DUPLICATE
    assert assets.skipped == 1
    assert assets.inserted == 0
    assert assets.duplicates[-1].source == "database"
    assert assets.status == SheetStatus.SKIPPED
    # the rest of the transaction survived
    assert fake_db.find("asset_categories", code="IT") is not None
    assert "ROLLBACK TO SAVEPOINT import_row" in fake_db.statements


def test_other_insert_failure_rolls_back_everything(fake_db, cursor, base_sheets):
    context = build_context(cursor, base_sheets)

    def fail_assets(table, row):
        if table == "assets":
            return RuntimeError("disk full")
        return None

    fake_db.fail_insert = fail_assets
    with pytest.raises(ImportFailure) as excinfo:
        persist(cursor, context)

    assert excinfo.value.details == {"sheet": "assets", "row": 2, "message": "insert into assets failed: disk full"}
    assert fake_db.rollbacks == 1
    assert fake_db.data_counts() == {t: 0 for t in fake_db.data_counts()}


def test_clear_deletes_children_first(fake_db, cursor, base_sheets):
    category = fake_db.seed("asset_categories", [{"code": "OLD", "name": "old"}])[0]
    status = fake_db.seed("asset_statuses", [{"code": "OLD", "name": "old"}])[0]
    fake_db.seed(
        "assets",
        [{"asset_tag": "OLD-1", "name": "old", "asset_category_id": category["id"], "asset_status_id": status["id"]}],
    )
    context = build_context(cursor, base_sheets, clear_tables=True)
    assert sheets_to_clear(context) == ["asset_categories", "asset_statuses", "assets"]

    persist(cursor, context)

    deletes = [s for s in fake_db.statements if s.startswith("DELETE")]
    assert deletes == ["DELETE FROM assets", "DELETE FROM asset_statuses", "DELETE FROM asset_categories"]
    assert [r["asset_tag"] for r in fake_db.rows("assets")] == ["AST-1"]
    assert context.cleared_tables == ["asset_categories", "asset_statuses", "assets"]
    assert all(context.sheets[n].cleared for n in context.cleared_tables)


def test_clear_failure_is_fatal(fake_db, cursor):
    # assets reference the category; the assets sheet is absent so it is not cleared
    category = fake_db.seed("asset_categories", [{"code": "OLD", "name": "old"}])[0]
    status = fake_db.seed("asset_statuses", [{"code": "ST", "name": "st"}])[0]
    fake_db.seed(
        "assets",
        [{"asset_tag": "OLD-1", "name": "old", "asset_category_id": category["id"], "asset_status_id": status["id"]}],
    )
    context = build_context(
        cursor,
        {"asset_categories": [{"code": "IT", "name": "IT"}], "assets": []},
        clear_tables=True,
    )
    context.clear_requested.discard("assets")
    with pytest.raises(ImportFailure):
        persist(cursor, context)
    assert fake_db.find("asset_categories", code="OLD") is not None


def test_commit_status_rules():
    outcome = SheetOutcome(sheet="departments", label="Departments", present=True, status=SheetStatus.VALIDATED)
    outcome.inserted = 2
    assert commit_status(outcome) == SheetStatus.COMMITTED
    outcome.skipped = 1
    assert commit_status(outcome) == SheetStatus.COMMITTED_WITH_SKIPS
    outcome.inserted = 0
    assert commit_status(outcome) == SheetStatus.SKIPPED
    outcome.failed = 1
    outcome.status = SheetStatus.INVALID
    assert commit_status(outcome) == SheetStatus.INVALID


def test_failed_rows_plus_database_duplicates_stay_invalid(fake_db, cursor):
    fake_db.seed("departments", [{"code": "FIN", "name": "Finance"}])
    context = build_context(
        cursor,
        {
            "departments": [{"code": "FIN", "name": "Finance"}, {"code": None, "name": "No code"}],
            "assets": [],
        },
    )
    persist(cursor, context)

    departments = context.sheets["departments"]
    assert departments.inserted == 0
    assert departments.skipped == 1
    assert departments.failed == 1
    assert departments.status == SheetStatus.INVALID
