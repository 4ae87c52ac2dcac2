from __future__ import annotations

import json
import math
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

"""Field normalizers: raw cell value -> canonical typed value.

Every normalizer maps absent input (None, empty or whitespace-only text) to
None and never raises for it. Present but malformed input raises
FieldValueError; callers turn that into a row error naming the field.
"""

__all__ = [
    "FieldValueError",
    "is_blank",
    "normalize_string",
    "normalize_code",
    "normalize_name",
    "normalize_name_key",
    "normalize_asset_tag",
    "normalize_boolean",
    "normalize_integer",
    "normalize_decimal",
    "normalize_email",
    "normalize_json_object",
    "resolve_flag",
]

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_TRUE_TOKENS = frozenset({"true", "1", "yes", "y"})
_FALSE_TOKENS = frozenset({"false", "0", "no", "n"})
# request flags additionally accept Spanish "si"/"sí"
_FLAG_TRUE_TOKENS = _TRUE_TOKENS | {"si", "sí"}


class FieldValueError(ValueError):
    """Raised when a present cell value cannot be normalized."""


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, float) and math.isnan(value):
        return True
    return False


def normalize_string(value: Any) -> str | None:
    if is_blank(value):
        return None
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, bool):
        return str(value).upper()
    # numeric cells typed as codes come back as 12.0 from the spreadsheet
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip() or None


def normalize_code(value: Any) -> str | None:
    text = normalize_string(value)
    return text.upper() if text else None


def normalize_name(value: Any) -> str | None:
    return normalize_string(value)


def normalize_name_key(value: Any) -> str | None:
    """Natural key for name-keyed entities (responsibles, providers)."""
    text = normalize_string(value)
    return text.lower() if text else None


def normalize_asset_tag(value: Any) -> str | None:
    return normalize_code(value)


def normalize_boolean(value: Any) -> bool | None:
    if is_blank(value):
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        if value == 1:
            return True
        if value == 0:
            return False
        raise FieldValueError(f"not a boolean: {value!r}")
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_TOKENS:
            return True
        if lowered in _FALSE_TOKENS:
            return False
    raise FieldValueError(f"not a boolean: {value!r}")


def _parse_decimal_text(text: str) -> Decimal:
    try:
        parsed = Decimal(text.strip().replace(",", "."))
    except InvalidOperation as e:
        raise FieldValueError(f"not a number: {text!r}") from e
    if not parsed.is_finite():
        raise FieldValueError(f"not a finite number: {text!r}")
    return parsed


def normalize_integer(value: Any) -> int | None:
    if is_blank(value):
        return None
    if isinstance(value, bool):
        raise FieldValueError(f"not an integer: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return int(value)
        raise FieldValueError(f"not an integer: {value!r}")
    if isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, str):
        parsed = _parse_decimal_text(value)
    else:
        raise FieldValueError(f"not an integer: {value!r}")
    if parsed != parsed.to_integral_value():
        raise FieldValueError(f"not an integer: {value!r}")
    return int(parsed)


def normalize_decimal(value: Any) -> Decimal | None:
    if is_blank(value):
        return None
    if isinstance(value, bool):
        raise FieldValueError(f"not a number: {value!r}")
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise FieldValueError(f"not a finite number: {value!r}")
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise FieldValueError(f"not a finite number: {value!r}")
        return Decimal(str(value))
    if isinstance(value, str):
        return _parse_decimal_text(value)
    raise FieldValueError(f"not a number: {value!r}")


def normalize_email(value: Any) -> str | None:
    text = normalize_string(value)
    if text is None:
        return None
    if not _EMAIL_RE.match(text):
        raise FieldValueError(f"invalid email address: {text!r}")
    return text.lower()


def normalize_json_object(value: Any) -> dict[str, Any] | None:
    if is_blank(value):
        return None
    if isinstance(value, dict):
        return dict(value)
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError as e:
            raise FieldValueError(f"invalid JSON: {e.msg}") from e
        if isinstance(parsed, dict):
            return parsed
        raise FieldValueError("JSON value must be an object")
    raise FieldValueError(f"invalid JSON object: {value!r}")


def resolve_flag(value: Any, default: bool) -> bool:
    """Parse a request/CLI flag; unknown tokens fall back to the default."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _FLAG_TRUE_TOKENS:
            return True
        if lowered in _FALSE_TOKENS:
            return False
    return default
