"""Interfaces and filter helpers for the row-oriented backend."""

from __future__ import annotations

import operator
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

Row = Dict[str, Any]
RowKey = Tuple[str, Any]


class BackendError(RuntimeError):
    """Raised by backends when a query or mutation fails."""


OPERATORS: Dict[str, Callable[[Any, Any], Any]] = {
    "eq": operator.eq,
    "neq": operator.ne,
    "lt": operator.lt,
    "lte": operator.le,
    "gt": operator.gt,
    "gte": operator.ge,
}


@dataclass(frozen=True)
class Filter:
    """A single ``column <op> value`` condition; filters are AND-ed."""
    column: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in OPERATORS:
            raise ValueError(f"Unsupported filter operator '{self.op}'")


@dataclass(frozen=True)
class Order:
    """Sort key for query results."""
    column: str
    descending: bool = False


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


def neq(column: str, value: Any) -> Filter:
    return Filter(column, "neq", value)


def lt(column: str, value: Any) -> Filter:
    return Filter(column, "lt", value)


def lte(column: str, value: Any) -> Filter:
    return Filter(column, "lte", value)


def gt(column: str, value: Any) -> Filter:
    return Filter(column, "gt", value)


def gte(column: str, value: Any) -> Filter:
    return Filter(column, "gte", value)


class Backend(Protocol):
    """Interface for anything that can serve account rows."""

    def query_rows(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        *,
        columns: Optional[Sequence[str]] = None,
        order_by: Sequence[Order] = (),
        limit: Optional[int] = None,
    ) -> List[Row]:
        """Return rows matching every filter, raising BackendError on failure."""
        ...

    def update_row(self, table: str, key: RowKey, fields: Mapping[str, Any]) -> int:
        """Update rows where ``key[0] == key[1]``; return the number updated."""
        ...
