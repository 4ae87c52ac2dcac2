from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from ..db.batch_insert import fetch_dicts

"""Natural-key registry: per-kind key -> record lookup for one import run.

Three tiers are consulted:

1. inserted -- records written earlier in the current commit pass (real ids)
2. persisted -- records bulk-loaded from storage when the run starts
3. not found

Validation also registers *pending* rows (normalized data, no id yet) so a
later sheet can reference a row that is only queued for insertion. Pending
entries satisfy reference checks but never yield an id.

One registry belongs to exactly one run; nothing is shared across runs.
"""

__all__ = [
    "NaturalKeyRegistry",
]

logger = logging.getLogger(__name__)

KeyFn = Callable[[Mapping[str, Any]], str | None]


class NaturalKeyRegistry:
    def __init__(self) -> None:
        self._persisted: dict[str, dict[str, Mapping[str, Any]]] = {}
        self._inserted: dict[str, dict[str, Mapping[str, Any]]] = {}
        self._pending: dict[str, dict[str, Mapping[str, Any]]] = {}

    # -- seeding -----------------------------------------------------------
    def seed(self, kind: str, records: Iterable[Mapping[str, Any]], key_fn: KeyFn) -> int:
        bucket = self._persisted.setdefault(kind, {})
        for record in records:
            key = key_fn(record)
            if key:
                bucket[key] = record
        return len(bucket)

    def load(self, cursor: Any, kinds: Iterable[Any]) -> None:
        """Bulk-load every governed table.

        Each kind supplies ``preload_sql`` and ``natural_key(record)``.
        """
        for kind in kinds:
            cursor.execute(kind.preload_sql)
            count = self.seed(kind.sheet_name, fetch_dicts(cursor), kind.natural_key)
            logger.debug("registry preload kind=%s records=%d", kind.sheet_name, count)

    # -- registration ------------------------------------------------------
    def register_pending(self, kind: str, key: str | None, data: Mapping[str, Any]) -> None:
        if key:
            self._pending.setdefault(kind, {})[key] = data

    def register_inserted(self, kind: str, key: str | None, record: Mapping[str, Any]) -> None:
        if key:
            self._inserted.setdefault(kind, {})[key] = record

    def clear(self, kind: str) -> None:
        """Forget persisted records of a kind whose table is being cleared."""
        logger.debug("registry clear kind=%s dropped=%d", kind, self.persisted_count(kind))
        self._persisted.pop(kind, None)

    # -- lookups -----------------------------------------------------------
    def find(self, kind: str, key: str | None) -> Mapping[str, Any] | None:
        """Reference check used during validation.

        Pending rows of this batch win over stored records; the returned
        mapping is normalized row data for pending rows, a stored record
        otherwise.
        """
        if not key:
            return None
        pending = self._pending.get(kind, {}).get(key)
        if pending is not None:
            return pending
        return self.record(kind, key)

    def record(self, kind: str, key: str | None) -> Mapping[str, Any] | None:
        """Stored record for a key (inserted in this pass, then preloaded)."""
        if not key:
            return None
        inserted = self._inserted.get(kind, {}).get(key)
        if inserted is not None:
            return inserted
        return self._persisted.get(kind, {}).get(key)

    def resolve_id(self, kind: str, key: str | None) -> Any:
        record = self.record(kind, key)
        if record is None:
            return None
        return record.get("id")

    def is_persisted(self, kind: str, key: str | None) -> bool:
        return bool(key) and key in self._persisted.get(kind, {})

    def persisted_count(self, kind: str) -> int:
        return len(self._persisted.get(kind, {}))
