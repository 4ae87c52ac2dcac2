from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from ..db.batch_insert import insert_row
from ..models.sheet_definitions import SHEET_DEFINITIONS, SheetDefinition
from .normalizers import (
    FieldValueError,
    is_blank,
    normalize_asset_tag,
    normalize_boolean,
    normalize_code,
    normalize_decimal,
    normalize_email,
    normalize_integer,
    normalize_json_object,
    normalize_name,
    normalize_name_key,
    normalize_string,
)
from .registry import NaturalKeyRegistry

"""Entity kinds: one class per worksheet, validating rows and inserting them.

Every kind implements the same capability pair:

    validate_row(values, registry) -> RowCheck      (pure, no I/O)
    insert_row(cursor, data, registry, actor_id)    (one INSERT ... RETURNING)

plus ``natural_key(record)`` and ``preload_sql`` for the registry. The
orchestrator picks the kind for a sheet with ``kind_for(sheet_name)``; a new
entity kind is a new subclass appended to ENTITY_KINDS.

Reference columns are either hard (unresolved -> row error) or soft
(unresolved -> warning, inserted as NULL). The split follows the business
rules of the template; see the table in each validate_row.
"""

__all__ = [
    "RowCheck",
    "UnresolvedReferenceError",
    "EntityKind",
    "ENTITY_KINDS",
    "kind_for",
]

Normalizer = Callable[[Any], Any]


class UnresolvedReferenceError(Exception):
    """A hard reference could not be resolved to an id at insert time."""


@dataclass
class RowCheck:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


class _RowChecker:
    """Collects normalized fields, errors and warnings for one row."""

    def __init__(self, values: Mapping[str, Any], registry: NaturalKeyRegistry) -> None:
        self.values = values
        self.registry = registry
        self.check = RowCheck()

    @property
    def data(self) -> dict[str, Any]:
        return self.check.data

    def _normalize(self, name: str, normalizer: Normalizer) -> tuple[Any, bool]:
        try:
            return normalizer(self.values.get(name)), True
        except FieldValueError as e:
            self.check.errors.append(f"Field {name} is invalid: {e}.")
            return None, False

    def required(self, name: str, normalizer: Normalizer = normalize_name) -> Any:
        value, ok = self._normalize(name, normalizer)
        if ok and value is None:
            self.check.errors.append(f"Field {name} is required.")
        self.data[name] = value
        return value

    def optional(self, name: str, normalizer: Normalizer = normalize_string) -> Any:
        value, _ = self._normalize(name, normalizer)
        self.data[name] = value
        return value

    def positive_int(self, name: str) -> int | None:
        value, ok = self._normalize(name, normalize_integer)
        if ok and value is not None and value <= 0:
            self.check.errors.append(f"Field {name} must be a positive integer.")
            value = None
        self.data[name] = value
        return value

    def bounded_decimal(self, name: str, low: int, high: int) -> Any:
        value, ok = self._normalize(name, normalize_decimal)
        if ok and value is not None and not (low <= value <= high):
            self.check.errors.append(f"Field {name} must be between {low} and {high}.")
            value = None
        self.data[name] = value
        return value

    def reference(
        self,
        name: str,
        kind: str,
        label: str,
        *,
        hard: bool,
        required: bool = False,
        normalizer: Normalizer = normalize_code,
        key_fn: Normalizer | None = None,
        missing_suffix: str = "does not exist",
    ) -> Any:
        """Normalize a reference column and check it against the registry."""
        if required:
            value = self.required(name, normalizer)
        else:
            value = self.optional(name, normalizer)
        if value is None:
            return None
        key = key_fn(value) if key_fn else value
        if self.registry.find(kind, key) is None:
            message = f"{label} {value} {missing_suffix}."
            if hard:
                self.check.errors.append(message)
            else:
                self.check.warnings.append(message)
        return value


def _ensure_id(registry: NaturalKeyRegistry, kind: str, key: str | None, label: str) -> Any:
    if not key:
        return None
    record_id = registry.resolve_id(kind, key)
    if record_id is None:
        raise UnresolvedReferenceError(f"{label} {key} does not exist")
    return record_id


class EntityKind:
    """Common behaviour of all worksheet kinds."""

    sheet_name: str = ""
    preload_sql: str = ""
    returning: tuple[str, ...] = ("id",)

    @property
    def definition(self) -> SheetDefinition:
        return SHEET_DEFINITIONS[self.sheet_name]

    def natural_key(self, record: Mapping[str, Any]) -> str | None:
        return normalize_code(record.get("code"))

    def validate_row(self, values: Mapping[str, Any], registry: NaturalKeyRegistry) -> RowCheck:
        checker = _RowChecker(values, registry)
        self._validate(checker)
        return checker.check

    def _validate(self, row: _RowChecker) -> None:
        raise NotImplementedError

    def insert_values(
        self, data: Mapping[str, Any], registry: NaturalKeyRegistry, actor_id: Any
    ) -> dict[str, Any]:
        raise NotImplementedError

    def insert_row(
        self, cursor: Any, data: Mapping[str, Any], registry: NaturalKeyRegistry, actor_id: Any
    ) -> dict[str, Any]:
        values = self.insert_values(data, registry, actor_id)
        return insert_row(
            cursor,
            self.definition.table,
            list(values.keys()),
            list(values.values()),
            returning=self.returning,
        )


class DepreciationMethods(EntityKind):
    sheet_name = "depreciation_methods"
    preload_sql = "SELECT id, code, name FROM depreciation_methods"
    returning = ("id", "code", "name")

    def _validate(self, row: _RowChecker) -> None:
        row.required("code", normalize_code)
        row.required("name")
        row.optional("description")
        row.optional("formula_notes")
        row.optional("default_period")

    def insert_values(self, data, registry, actor_id):
        return {
            "code": data["code"],
            "name": data["name"],
            "description": data.get("description"),
            "formula_notes": data.get("formula_notes"),
            "default_period": data.get("default_period"),
        }


class AssetCategories(EntityKind):
    sheet_name = "asset_categories"
    preload_sql = (
        "SELECT id, code, name, default_depreciation_method_id, default_lifespan_months FROM asset_categories"
    )
    returning = ("id", "code", "name", "default_depreciation_method_id", "default_lifespan_months")

    def _validate(self, row: _RowChecker) -> None:
        row.required("code", normalize_code)
        row.required("name")
        row.optional("description")
        row.reference(
            "default_depreciation_method_code", "depreciation_methods", "Depreciation method", hard=True
        )
        row.positive_int("default_lifespan_months")

    def insert_values(self, data, registry, actor_id):
        return {
            "code": data["code"],
            "name": data["name"],
            "description": data.get("description"),
            "default_depreciation_method_id": _ensure_id(
                registry,
                "depreciation_methods",
                data.get("default_depreciation_method_code"),
                "Depreciation method",
            ),
            "default_lifespan_months": data.get("default_lifespan_months"),
        }


class AssetStatuses(EntityKind):
    sheet_name = "asset_statuses"
    preload_sql = "SELECT id, code, name, is_active FROM asset_statuses"
    returning = ("id", "code", "name", "is_active")

    def _validate(self, row: _RowChecker) -> None:
        row.required("code", normalize_code)
        row.required("name")
        is_active = row.optional("is_active", normalize_boolean)
        if is_active is None:
            row.data["is_active"] = True

    def insert_values(self, data, registry, actor_id):
        return {"code": data["code"], "name": data["name"], "is_active": data.get("is_active", True)}


class DocumentTypes(EntityKind):
    sheet_name = "document_types"
    preload_sql = "SELECT id, code, name FROM document_types"
    returning = ("id", "code", "name")

    def _validate(self, row: _RowChecker) -> None:
        row.required("code", normalize_code)
        row.required("name")
        row.optional("description")

    def insert_values(self, data, registry, actor_id):
        return {"code": data["code"], "name": data["name"], "description": data.get("description")}


class Departments(EntityKind):
    sheet_name = "departments"
    preload_sql = "SELECT id, code, name, parent_id FROM departments"
    returning = ("id", "code", "name", "parent_id")

    def _validate(self, row: _RowChecker) -> None:
        row.required("code", normalize_code)
        row.required("name")
        # the department forest need not be connected yet
        row.reference("parent_code", "departments", "Parent department", hard=False)

    def insert_values(self, data, registry, actor_id):
        return {
            "code": data["code"],
            "name": data["name"],
            "parent_id": registry.resolve_id("departments", data.get("parent_code")),
        }


class CostCenters(EntityKind):
    sheet_name = "cost_centers"
    preload_sql = "SELECT id, code, name, department_id FROM cost_centers"
    returning = ("id", "code", "name", "department_id")

    def _validate(self, row: _RowChecker) -> None:
        row.required("code", normalize_code)
        row.required("name")
        row.reference("department_code", "departments", "Department", hard=True)

    def insert_values(self, data, registry, actor_id):
        return {
            "code": data["code"],
            "name": data["name"],
            "department_id": _ensure_id(registry, "departments", data.get("department_code"), "Department"),
        }


class Locations(EntityKind):
    sheet_name = "locations"
    preload_sql = "SELECT id, code, name, parent_id FROM locations"
    returning = ("id", "code", "name", "parent_id")
    _TEXT_FIELDS = ("address_line", "city", "region", "country", "postal_code")

    def _validate(self, row: _RowChecker) -> None:
        row.required("code", normalize_code)
        row.required("name")
        row.reference("parent_code", "locations", "Parent location", hard=False)
        for name in self._TEXT_FIELDS:
            row.optional(name)
        row.bounded_decimal("latitude", -90, 90)
        row.bounded_decimal("longitude", -180, 180)

    def insert_values(self, data, registry, actor_id):
        values = {
            "code": data["code"],
            "name": data["name"],
            "parent_id": registry.resolve_id("locations", data.get("parent_code")),
        }
        for name in self._TEXT_FIELDS + ("latitude", "longitude"):
            values[name] = data.get(name)
        return values


class Responsibles(EntityKind):
    sheet_name = "responsibles"
    preload_sql = "SELECT id, name, email, department_id FROM responsibles"
    returning = ("id", "name", "email", "department_id")

    def natural_key(self, record):
        return normalize_name_key(record.get("name"))

    def _validate(self, row: _RowChecker) -> None:
        row.required("name")
        row.optional("email", normalize_email)
        row.optional("phone")
        row.reference("department_code", "departments", "Department", hard=True)

    def insert_values(self, data, registry, actor_id):
        return {
            "name": data["name"],
            "email": data.get("email"),
            "phone": data.get("phone"),
            "department_id": _ensure_id(registry, "departments", data.get("department_code"), "Department"),
        }


class Providers(EntityKind):
    sheet_name = "providers"
    preload_sql = "SELECT id, name, contact_email, contact_phone FROM providers"
    returning = ("id", "name")
    _TEXT_FIELDS = ("contact_phone", "tax_id", "address_line", "city", "region", "country", "postal_code")

    def natural_key(self, record):
        return normalize_name_key(record.get("name"))

    def _validate(self, row: _RowChecker) -> None:
        row.required("name")
        row.optional("contact_email", normalize_email)
        for name in self._TEXT_FIELDS:
            row.optional(name)

    def insert_values(self, data, registry, actor_id):
        values = {"name": data["name"], "contact_email": data.get("contact_email")}
        for name in self._TEXT_FIELDS:
            values[name] = data.get(name)
        return values


class Assets(EntityKind):
    sheet_name = "assets"
    preload_sql = "SELECT id, asset_tag FROM assets"
    returning = ("id", "asset_tag")
    MONEY_FIELDS = (
        "initial_cost",
        "actual_cost",
        "residual_value",
        "actual_book_value",
        "cumulative_depreciation_value",
    )

    def natural_key(self, record):
        return normalize_asset_tag(record.get("asset_tag"))

    def _validate(self, row: _RowChecker) -> None:
        #  hard: category, status, depreciation method (when given)
        #  soft: parent asset, provider, department, cost center, location, responsible
        row.required("asset_tag", normalize_asset_tag)
        row.required("name")
        row.optional("description")
        row.optional("alternative_number")
        row.reference(
            "parent_asset_tag",
            "assets",
            "Parent asset",
            hard=False,
            normalizer=normalize_asset_tag,
            missing_suffix="does not exist yet",
        )
        row.reference("asset_category_code", "asset_categories", "Category", hard=True, required=True)
        row.reference("asset_status_code", "asset_statuses", "Status", hard=True, required=True)
        row.reference("depreciation_method_code", "depreciation_methods", "Depreciation method", hard=True)
        row.positive_int("lifespan_months")
        row.optional("depreciation_period")
        for name in self.MONEY_FIELDS:
            row.optional(name, normalize_decimal)
        row.optional("purchase_order_number")
        row.optional("transaction_number")
        row.reference(
            "provider_name", "providers", "Provider", hard=False, normalizer=normalize_name, key_fn=str.lower
        )
        row.reference("department_code", "departments", "Department", hard=False)
        row.reference("cost_center_code", "cost_centers", "Cost center", hard=False)
        row.reference("location_code", "locations", "Location", hard=False)
        row.reference(
            "responsible_name",
            "responsibles",
            "Responsible",
            hard=False,
            normalizer=normalize_name,
            key_fn=str.lower,
        )
        row.optional("responsible_email", normalize_email)
        row.optional("additional_attributes", normalize_json_object)

    def insert_values(self, data, registry, actor_id):
        category_code = data.get("asset_category_code")
        category_id = _ensure_id(registry, "asset_categories", category_code, "Category")
        status_id = _ensure_id(registry, "asset_statuses", data.get("asset_status_code"), "Status")
        category = registry.record("asset_categories", category_code) or {}

        method_id = registry.resolve_id("depreciation_methods", data.get("depreciation_method_code"))
        if method_id is None and is_blank(data.get("depreciation_method_code")):
            method_id = category.get("default_depreciation_method_id")
        lifespan = data.get("lifespan_months")
        if lifespan is None:
            lifespan = category.get("default_lifespan_months")

        provider = data.get("provider_name")
        responsible = data.get("responsible_name")
        values = {
            "asset_tag": data["asset_tag"],
            "name": data["name"],
            "description": data.get("description"),
            "alternative_number": data.get("alternative_number"),
            "parent_asset_id": registry.resolve_id("assets", data.get("parent_asset_tag")),
            "asset_category_id": category_id,
            "asset_status_id": status_id,
            "depreciation_method_id": method_id,
            "lifespan_months": lifespan,
            "depreciation_period": data.get("depreciation_period"),
        }
        for name in self.MONEY_FIELDS:
            values[name] = data.get(name)
        values.update(
            {
                "purchase_order_number": data.get("purchase_order_number"),
                "transaction_number": data.get("transaction_number"),
                "provider_id": registry.resolve_id("providers", provider.lower() if provider else None),
                "department_id": registry.resolve_id("departments", data.get("department_code")),
                "cost_center_id": registry.resolve_id("cost_centers", data.get("cost_center_code")),
                "location_id": registry.resolve_id("locations", data.get("location_code")),
                "responsible_id": registry.resolve_id(
                    "responsibles", responsible.lower() if responsible else None
                ),
                "created_by": actor_id,
                "updated_by": actor_id,
                "additional_attributes": data.get("additional_attributes"),
            }
        )
        return values


ENTITY_KINDS: tuple[EntityKind, ...] = (
    DepreciationMethods(),
    AssetCategories(),
    AssetStatuses(),
    DocumentTypes(),
    Departments(),
    CostCenters(),
    Locations(),
    Responsibles(),
    Providers(),
    Assets(),
)

_KINDS_BY_SHEET = {kind.sheet_name: kind for kind in ENTITY_KINDS}


def kind_for(sheet_name: str) -> EntityKind:
    """Return the entity kind handling a sheet; KeyError for unknown sheets."""
    return _KINDS_BY_SHEET[sheet_name]
