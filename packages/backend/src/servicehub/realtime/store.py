"""Record store — the narrow query surface the live layer reads through.

Learn: Recomputes never touch ORM objects directly. They go through
query() / count() with a table name and a list of simple filters, so the
same aggregation code runs against PostgreSQL in production and an
in-memory fake in tests. Every failure is re-raised as QueryError; the
callers decide whether that means "keep the last value" or "fall back".
"""

import uuid
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Protocol, Sequence

from sqlalchemy import func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from servicehub.db.models import TABLES
from servicehub.realtime.errors import QueryError


@dataclass(frozen=True)
class Filter:
    """One predicate on one column. ops: eq, gte, in."""

    column: str
    value: Any
    op: str = "eq"


def eq(column: str, value: Any) -> Filter:
    return Filter(column, value, "eq")


def gte(column: str, value: Any) -> Filter:
    return Filter(column, value, "gte")


def in_(column: str, values: Iterable[Any]) -> Filter:
    return Filter(column, tuple(values), "in")


class RecordStore(Protocol):
    """What the live layer needs from the data store."""

    async def query(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        columns: Optional[Sequence[str]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]: ...

    async def count(self, table: str, filters: Sequence[Filter] = ()) -> int: ...

    async def insert(self, table: str, values: dict[str, Any]) -> dict[str, Any]: ...

    async def update(
        self, table: str, filters: Sequence[Filter], values: dict[str, Any]
    ) -> int: ...


def _plain(value: Any) -> Any:
    """Normalize driver values to what the change feed carries (str ids)."""
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


class SqlRecordStore:
    """RecordStore backed by the async SQLAlchemy session factory.

    Each call opens and closes its own session — a recompute that
    outlives its view never holds a connection hostage.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # ─── Helpers ──────────────────────────────────────────

    def _model(self, table: str):
        try:
            return TABLES[table]
        except KeyError:
            raise QueryError(f"Unknown table '{table}'")

    def _column(self, model, name: str):
        column = getattr(model, name, None)
        if column is None:
            raise QueryError(f"Unknown column '{model.__tablename__}.{name}'")
        return column

    def _coerce(self, column, value: Any) -> Any:
        if isinstance(value, str) and getattr(column.type, "as_uuid", False):
            try:
                return uuid.UUID(value)
            except ValueError:
                raise QueryError(f"Invalid id '{value}' for {column.key}")
        return value

    def _where(self, model, filters: Sequence[Filter]) -> list:
        clauses = []
        for f in filters:
            column = self._column(model, f.column)
            if f.op == "eq":
                clauses.append(column == self._coerce(column, f.value))
            elif f.op == "gte":
                clauses.append(column >= self._coerce(column, f.value))
            elif f.op == "in":
                clauses.append(
                    column.in_([self._coerce(column, v) for v in f.value])
                )
            else:
                raise QueryError(f"Unsupported filter op '{f.op}'")
        return clauses

    # ─── Reads ────────────────────────────────────────────

    async def query(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        columns: Optional[Sequence[str]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        model = self._model(table)
        if columns:
            q = select(*[self._column(model, c) for c in columns])
        else:
            q = select(*model.__table__.columns)
        q = q.where(*self._where(model, filters))
        if order_by:
            ordering = self._column(model, order_by)
            q = q.order_by(ordering.desc() if descending else ordering.asc())

        try:
            async with self._session_factory() as db:
                result = await db.execute(q)
                rows = result.mappings().all()
        except SQLAlchemyError as e:
            raise QueryError(f"Query on '{table}' failed: {e}") from e

        return [{k: _plain(v) for k, v in row.items()} for row in rows]

    async def count(self, table: str, filters: Sequence[Filter] = ()) -> int:
        model = self._model(table)
        q = select(func.count()).select_from(model).where(*self._where(model, filters))
        try:
            async with self._session_factory() as db:
                result = await db.execute(q)
                return int(result.scalar_one())
        except SQLAlchemyError as e:
            raise QueryError(f"Count on '{table}' failed: {e}") from e

    # ─── Writes (used by the thin HTTP API) ───────────────

    async def insert(self, table: str, values: dict[str, Any]) -> dict[str, Any]:
        model = self._model(table)
        coerced = {
            k: self._coerce(self._column(model, k), v) for k, v in values.items()
        }
        q = insert(model).values(**coerced).returning(*model.__table__.columns)
        try:
            async with self._session_factory() as db:
                result = await db.execute(q)
                row = result.mappings().one()
                await db.commit()
        except SQLAlchemyError as e:
            raise QueryError(f"Insert into '{table}' failed: {e}") from e
        return {k: _plain(v) for k, v in row.items()}

    async def update(
        self, table: str, filters: Sequence[Filter], values: dict[str, Any]
    ) -> int:
        model = self._model(table)
        q = update(model).where(*self._where(model, filters)).values(**values)
        try:
            async with self._session_factory() as db:
                result = await db.execute(q)
                await db.commit()
        except SQLAlchemyError as e:
            raise QueryError(f"Update on '{table}' failed: {e}") from e
        return result.rowcount
