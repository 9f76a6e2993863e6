"""SQLAlchemy-backed implementation of the Backend interface.

Targets the hosted Postgres database behind the app (``profiles`` and
``plans`` tables), but any SQLAlchemy URL works; the tests run it against
in-memory SQLite. Tables are addressed by name with lightweight
``table()``/``column()`` constructs, so no schema reflection is needed.
"""

from __future__ import annotations

import datetime as dt
from typing import Any, List, Mapping, Optional, Sequence

from sqlalchemy import column, create_engine, func, select, table, text, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from gymcore.backend.base import OPERATORS, Backend, BackendError, Filter, Order, Row, RowKey
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="backend/sql_backend")


def _table(name: str, *columns: str):
    """Build a table clause, honouring an optional ``schema.table`` name."""
    schema = None
    if "." in name:
        schema, name = name.split(".", 1)
    return table(name, *(column(c) for c in columns), schema=schema)


class SqlBackend(Backend):
    """Run row queries and updates through a SQLAlchemy engine."""

    def __init__(self, engine: Engine) -> None:
        """Bind to a database engine."""
        self.engine = engine

    @classmethod
    def from_url(cls, database_url: str, **kwargs) -> "SqlBackend":
        """Create an engine from a URL and build the backend."""
        engine = create_engine(database_url, future=True, **kwargs)
        return cls(engine)

    def _condition(self, col, flt: Filter):
        """Build the WHERE clause for one filter.

        SQLite stores timestamps as text in whatever ISO form was written
        (``T`` or space separator, with or without an offset), so datetime
        comparisons go through ``julianday()`` on both sides there.
        """
        if isinstance(flt.value, dt.datetime) and self.engine.dialect.name == "sqlite":
            return OPERATORS[flt.op](func.julianday(col), func.julianday(flt.value.isoformat()))
        return OPERATORS[flt.op](col, flt.value)

    def query_rows(
        self,
        table_name: str,
        filters: Sequence[Filter] = (),
        *,
        columns: Optional[Sequence[str]] = None,
        order_by: Sequence[Order] = (),
        limit: Optional[int] = None,
    ) -> List[Row]:
        """Select rows matching every filter."""
        referenced = list(columns or []) + [f.column for f in filters] + [o.column for o in order_by]
        tbl = _table(table_name, *dict.fromkeys(referenced))

        if columns:
            stmt = select(*(tbl.c[c] for c in columns))
        else:
            stmt = select(text("*")).select_from(tbl)
        for flt in filters:
            stmt = stmt.where(self._condition(tbl.c[flt.column], flt))
        for order in order_by:
            col = tbl.c[order.column]
            stmt = stmt.order_by(col.desc() if order.descending else col.asc())
        if limit is not None:
            stmt = stmt.limit(limit)

        logger.debug(f"Executing query on {table_name}: {stmt}")
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(stmt).mappings().all()
        except SQLAlchemyError as exc:
            raise BackendError(f"Query on '{table_name}' failed: {exc}") from exc
        return [dict(row) for row in rows]

    def update_row(self, table_name: str, key: RowKey, fields: Mapping[str, Any]) -> int:
        """Update rows by key inside a transaction; return the affected count."""
        key_column, key_value = key
        tbl = _table(table_name, *dict.fromkeys([key_column, *fields.keys()]))
        stmt = update(tbl).where(tbl.c[key_column] == key_value).values(**dict(fields))
        logger.debug(f"Executing update on {table_name}: {stmt}")
        try:
            with self.engine.begin() as conn:
                result = conn.execute(stmt)
        except SQLAlchemyError as exc:
            raise BackendError(f"Update on '{table_name}' failed: {exc}") from exc
        return result.rowcount
