"""In-memory backend holding tables as lists of dicts, for development and tests."""

from __future__ import annotations

import copy
import datetime as dt
import threading
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from gymcore.backend.base import OPERATORS, Backend, BackendError, Filter, Order, Row, RowKey
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="backend/in_memory_backend")


def _coerce(value: Any, like: Any) -> Any:
    """Bring a stored value to the type of the filter operand where possible.

    Rows loaded from JSON keep timestamps as ISO strings, so a datetime
    operand parses the stored string before comparing. Naive timestamps are
    read as UTC.
    """
    if isinstance(like, dt.datetime):
        if isinstance(value, str):
            value = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
        if isinstance(value, dt.datetime) and value.tzinfo is None and like.tzinfo is not None:
            value = value.replace(tzinfo=dt.timezone.utc)
    return value


def _matches(row: Mapping[str, Any], flt: Filter) -> bool:
    value = row.get(flt.column)
    if value is None or flt.value is None:
        # SQL semantics: comparisons against NULL never match
        return False
    try:
        return bool(OPERATORS[flt.op](_coerce(value, flt.value), flt.value))
    except (TypeError, ValueError) as exc:
        raise BackendError(f"Cannot compare column '{flt.column}': {exc}") from exc


class InMemoryBackend(Backend):
    """Thread-safe table store implementing the Backend interface."""

    def __init__(self, tables: Optional[Mapping[str, Iterable[Row]]] = None) -> None:
        logger.debug("Initializing InMemoryBackend")
        self._tables: Dict[str, List[Row]] = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }
        self._lock = threading.Lock()

    def insert(self, table: str, *rows: Row) -> None:
        """Append rows to a table, creating it if needed."""
        with self._lock:
            self._tables.setdefault(table, []).extend(dict(row) for row in rows)

    def _table(self, table: str) -> List[Row]:
        try:
            return self._tables[table]
        except KeyError:
            raise BackendError(f"Unknown table '{table}'") from None

    def query_rows(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        *,
        columns: Optional[Sequence[str]] = None,
        order_by: Sequence[Order] = (),
        limit: Optional[int] = None,
    ) -> List[Row]:
        """Filter, sort and project rows; returned dicts are copies."""
        with self._lock:
            rows = [row for row in self._table(table) if all(_matches(row, f) for f in filters)]
            rows = copy.deepcopy(rows)

        # stable sorts applied last-key-first give multi-column ordering
        for order in reversed(list(order_by)):
            present = [r for r in rows if r.get(order.column) is not None]
            missing = [r for r in rows if r.get(order.column) is None]
            try:
                present.sort(key=lambda r: r[order.column], reverse=order.descending)
            except TypeError as exc:
                raise BackendError(f"Cannot order by '{order.column}': {exc}") from exc
            rows = present + missing

        if limit is not None:
            rows = rows[:limit]
        if columns:
            rows = [{c: row.get(c) for c in columns} for row in rows]
        logger.debug("Query on %s returned %d rows", table, len(rows))
        return rows

    def update_row(self, table: str, key: RowKey, fields: Mapping[str, Any]) -> int:
        """Apply ``fields`` to every row whose key column equals the key value."""
        column, value = key
        updated = 0
        with self._lock:
            for row in self._table(table):
                if row.get(column) == value:
                    row.update(fields)
                    updated += 1
        logger.debug("Updated %d rows in %s where %s=%r", updated, table, column, value)
        return updated
