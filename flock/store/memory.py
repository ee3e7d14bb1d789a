"""In-memory table service.

Used by the test suite and for local development without a spreadsheet.
Rows are copied on the way in and out so callers can never mutate the
stored state behind the service's back.
"""

import copy
import threading
from typing import Any, Dict, Iterable, List, Mapping, Optional

from flock.core.errors import NotFoundError
from .base import Row, Table, TableService, new_id, table_name


class InMemoryTableService(TableService):
    """Dict-backed TableService, safe to share between threads."""

    def __init__(self, seed: Optional[Mapping["Table | str", Iterable[Mapping[str, Any]]]] = None):
        """Initialize the store.

        Args:
            seed: Optional initial rows per table
        """
        self._tables: Dict[str, Dict[str, Row]] = {t.value: {} for t in Table}
        self._lock = threading.RLock()
        for table, rows in (seed or {}).items():
            for row in rows:
                self.append(table, row)

    def _table(self, table: "Table | str") -> Dict[str, Row]:
        return self._tables.setdefault(table_name(table), {})

    def list(self, table: "Table | str") -> List[Row]:
        with self._lock:
            return [copy.deepcopy(row) for row in self._table(table).values()]

    def get(self, table: "Table | str", record_id: str) -> Row:
        with self._lock:
            row = self._table(table).get(str(record_id))
            if row is None:
                raise NotFoundError(table_name(table), record_id)
            return copy.deepcopy(row)

    def append(self, table: "Table | str", row: Mapping[str, Any]) -> str:
        stored = copy.deepcopy(dict(row))
        record_id = str(stored.get("id") or new_id())
        stored["id"] = record_id
        with self._lock:
            self._table(table)[record_id] = stored
        return record_id

    def update_by_id(
        self, table: "Table | str", record_id: str, patch: Mapping[str, Any]
    ) -> Row:
        with self._lock:
            rows = self._table(table)
            row = rows.get(str(record_id))
            if row is None:
                raise NotFoundError(table_name(table), record_id)
            row.update(copy.deepcopy({k: v for k, v in patch.items() if k != "id"}))
            return copy.deepcopy(row)
