from __future__ import annotations

from dataclasses import dataclass

"""Versioned workbook template: sheet names, columns and dependency order.

Adding or removing a column here requires bumping TEMPLATE_VERSION, since the
version is stamped on every report and every imports_log row.
"""

__all__ = [
    "TEMPLATE_VERSION",
    "SHEET_SEQUENCE",
    "SHEET_DEFINITIONS",
    "SheetDefinition",
    "template_path",
]

TEMPLATE_VERSION = "1.0"


@dataclass(frozen=True)
class SheetDefinition:
    """Column contract for one worksheet / entity kind."""
    name: str
    label: str
    table: str
    natural_key: str
    mandatory_columns: tuple[str, ...]
    optional_columns: tuple[str, ...] = ()
    required: bool = False

    @property
    def columns(self) -> tuple[str, ...]:
        return self.mandatory_columns + self.optional_columns


# Processing order: every sheet may only reference sheets listed before it
# (or itself, for parent columns).
SHEET_SEQUENCE: tuple[str, ...] = (
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
)

_CODE_NAME = ("code", "name")

SHEET_DEFINITIONS: dict[str, SheetDefinition] = {
    d.name: d
    for d in (
        SheetDefinition(
            name="depreciation_methods",
            label="Depreciation methods",
            table="depreciation_methods",
            natural_key="code",
            mandatory_columns=_CODE_NAME,
            optional_columns=("description", "formula_notes", "default_period"),
        ),
        SheetDefinition(
            name="asset_categories",
            label="Asset categories",
            table="asset_categories",
            natural_key="code",
            mandatory_columns=_CODE_NAME,
            optional_columns=("description", "default_depreciation_method_code", "default_lifespan_months"),
        ),
        SheetDefinition(
            name="asset_statuses",
            label="Asset statuses",
            table="asset_statuses",
            natural_key="code",
            mandatory_columns=_CODE_NAME,
            optional_columns=("is_active",),
        ),
        SheetDefinition(
            name="document_types",
            label="Document types",
            table="document_types",
            natural_key="code",
            mandatory_columns=_CODE_NAME,
            optional_columns=("description",),
        ),
        SheetDefinition(
            name="departments",
            label="Departments",
            table="departments",
            natural_key="code",
            mandatory_columns=_CODE_NAME,
            optional_columns=("parent_code",),
        ),
        SheetDefinition(
            name="cost_centers",
            label="Cost centers",
            table="cost_centers",
            natural_key="code",
            mandatory_columns=_CODE_NAME,
            optional_columns=("department_code",),
        ),
        SheetDefinition(
            name="locations",
            label="Locations",
            table="locations",
            natural_key="code",
            mandatory_columns=_CODE_NAME,
            optional_columns=(
                "parent_code",
                "address_line",
                "city",
                "region",
                "country",
                "postal_code",
                "latitude",
                "longitude",
            ),
        ),
        SheetDefinition(
            name="responsibles",
            label="Responsibles",
            table="responsibles",
            natural_key="name",
            mandatory_columns=("name",),
            optional_columns=("email", "phone", "department_code"),
        ),
        SheetDefinition(
            name="providers",
            label="Providers",
            table="providers",
            natural_key="name",
            mandatory_columns=("name",),
            optional_columns=(
                "contact_email",
                "contact_phone",
                "tax_id",
                "address_line",
                "city",
                "region",
                "country",
                "postal_code",
            ),
        ),
        SheetDefinition(
            name="assets",
            label="Assets",
            table="assets",
            natural_key="asset_tag",
            mandatory_columns=("asset_tag", "name", "asset_category_code", "asset_status_code"),
            optional_columns=(
                "description",
                "alternative_number",
                "parent_asset_tag",
                "depreciation_method_code",
                "lifespan_months",
                "depreciation_period",
                "initial_cost",
                "actual_cost",
                "residual_value",
                "actual_book_value",
                "cumulative_depreciation_value",
                "purchase_order_number",
                "transaction_number",
                "provider_name",
                "department_code",
                "cost_center_code",
                "location_code",
                "responsible_name",
                "responsible_email",
                "additional_attributes",
            ),
            required=True,
        ),
    )
}


def template_path(version: str = TEMPLATE_VERSION) -> str:
    return f"/templates/asset-import-v{version}.xlsx"
