"""
Database: one SQLAlchemy connection plus unit-of-work scoping.

Manifesto:
    The mapping engine needs three things from storage: a query builder per
    table, the id of the last inserted row and an all-or-nothing
    transaction scope. ``Database`` provides exactly that on top of a
    SQLAlchemy :class:`~sqlalchemy.engine.Engine`.

Architecture:
    ::

        Database(engine)
          │  lazily holds one sqlalchemy Connection
          │
          ├── table("users") ──▶ SqlQueryBuilder ──▶ fetch_all / scalar / execute
          │
          ├── outside transaction(): every statement commits on its own
          │
          └── transaction(callback)
                depth 0 → BEGIN, callback(db), COMMIT | ROLLBACK + re-raise
                depth>0 → callback joins the outer transaction

Guardrails:
    ❌ DON'T: Share one Database between threads or tasks
    ✅ DO: Create one per thread/task; the engine pool is shareable

Tags:
    sqlalchemy, connection, transaction, unit-of-work, entityspine

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from sqlalchemy import text
from sqlalchemy.engine import Connection as SAConnection
from sqlalchemy.engine import Engine
from sqlalchemy.sql import Executable

from entityspine.db.builder import SqlQueryBuilder
from entityspine.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class WriteResult:
    """What a write statement reported before its cursor was closed."""

    rowcount: int
    lastrowid: Any = None
    returned: Any = None


class Database:
    """Connection facade used by models and relations."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._connection: SAConnection | None = None
        self._depth = 0
        self._last_insert_id: Any = None

    @property
    def connection(self) -> SAConnection:
        if self._connection is None or self._connection.closed:
            self._connection = self.engine.connect()
        return self._connection

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def table(self, name: str) -> SqlQueryBuilder:
        return SqlQueryBuilder(self, name)

    # -- Execution ----------------------------------------------------------

    def fetch_all(self, stmt: Executable) -> list[dict[str, Any]]:
        rows = [dict(row) for row in self.connection.execute(stmt).mappings()]
        self._autocommit()
        return rows

    def scalar(self, stmt: Executable) -> Any:
        value = self.connection.execute(stmt).scalar()
        self._autocommit()
        return value

    def execute(
        self, stmt: Executable, params: Sequence[Mapping[str, Any]] | None = None
    ) -> WriteResult:
        result = self.connection.execute(stmt, params) if params is not None else self.connection.execute(stmt)
        returned = result.scalar() if result.returns_rows else None
        lastrowid = result.lastrowid if result.is_insert else None
        outcome = WriteResult(rowcount=result.rowcount, lastrowid=lastrowid, returned=returned)
        if returned is not None:
            self._last_insert_id = returned
        elif lastrowid:
            self._last_insert_id = lastrowid
        self._autocommit()
        return outcome

    def statement(self, sql: str, **params: Any) -> int:
        """Run raw SQL (DDL, maintenance); returns the affected row count."""
        result = self.connection.execute(text(sql), params)
        rowcount = result.rowcount
        self._autocommit()
        return rowcount

    def last_insert_id(self) -> Any:
        return self._last_insert_id

    def _autocommit(self) -> None:
        if self._depth == 0 and self.connection.in_transaction():
            self.connection.commit()

    # -- Unit of work -------------------------------------------------------

    def transaction(self, callback: Callable[[Database], T]) -> T:
        """Run ``callback(self)`` atomically; nested calls join the outer scope."""
        if self._depth > 0:
            self._depth += 1
            try:
                return callback(self)
            finally:
                self._depth -= 1

        conn = self.connection
        if conn.in_transaction():
            conn.commit()
        trans = conn.begin()
        self._depth = 1
        try:
            result = callback(self)
        except BaseException:
            trans.rollback()
            logger.debug("transaction_rolled_back")
            raise
        else:
            trans.commit()
            return result
        finally:
            self._depth = 0

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
