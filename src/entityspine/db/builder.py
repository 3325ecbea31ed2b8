"""
Fluent single-table query builder on SQLAlchemy Core.

``SqlQueryBuilder`` accumulates select columns, predicates, joins, ordering,
paging and a lock mode, and compiles them into SQLAlchemy Core statements
on demand. Tables and columns are lightweight ``table()`` / ``column()``
constructs, so no schema reflection or metadata is needed.

Chainable methods mutate the builder and return it; ``clone()`` makes an
independent copy. Terminal methods (``get``, ``count``, ``update`` ...)
execute through the owning :class:`~entityspine.db.connection.Database`.

Examples:
    >>> db.table("users").where("age", ">", 18).order_by("name").get()
    [{'id': 1, 'name': 'Ada', 'age': 36}]
    >>> db.table("users").where_in("id", [1, 2]).update({"active": True})
    2

Tags:
    sqlalchemy, query-builder, sql, entityspine

Doc-Types:
    api-reference
"""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from sqlalchemy.sql.elements import ColumnElement

from entityspine.errors import QueryError

if TYPE_CHECKING:
    from entityspine.db.connection import Database

_MISSING = object()

_OPERATORS = {
    "=": lambda c, v: c == v,
    "==": lambda c, v: c == v,
    "!=": lambda c, v: c != v,
    "<>": lambda c, v: c != v,
    "<": lambda c, v: c < v,
    "<=": lambda c, v: c <= v,
    ">": lambda c, v: c > v,
    ">=": lambda c, v: c >= v,
    "like": lambda c, v: c.like(v),
    "not like": lambda c, v: c.not_like(v),
}

LOCK_MODES = {"update": False, "for update": False, "share": True, "shared": True}


def column_ref(name: str) -> ColumnElement[Any]:
    """``"title"`` -> ``title``; qualified names (``posts.title``, ``posts.*``) render verbatim.

    Qualified references are literal so they never add a second FROM entry
    for a table the statement already selects from.
    """
    if "." in name or name.endswith("*"):
        return sa.literal_column(name)
    return sa.column(name)


class SqlQueryBuilder:
    """Mutable query state for one table, compiled to SQLAlchemy Core."""

    def __init__(self, database: Database, table: str):
        self._db = database
        self._table = table
        self._columns: list[ColumnElement[Any]] = []
        self._wheres: list[ColumnElement[bool]] = []
        self._joins: list[tuple[str, ColumnElement[bool], bool]] = []
        self._orders: list[ColumnElement[Any]] = []
        self._limit: int | None = None
        self._offset: int | None = None
        self._lock: str | None = None

    @property
    def table_name(self) -> str:
        return self._table

    # -- Select / predicates -----------------------------------------------

    def select(self, *columns: str) -> SqlQueryBuilder:
        self._columns.extend(column_ref(c) for c in columns)
        return self

    def select_raw(self, expression: str) -> SqlQueryBuilder:
        self._columns.append(sa.literal_column(expression))
        return self

    def add_select(self, column: str, alias: str) -> SqlQueryBuilder:
        self._columns.append(column_ref(column).label(alias))
        return self

    def where(self, column: str, operator: Any = _MISSING, value: Any = _MISSING) -> SqlQueryBuilder:
        """``where("age", 18)`` or ``where("age", ">", 18)``; ``None`` compares with IS NULL."""
        if operator is _MISSING:
            raise QueryError(f"where() on [{column}] needs a value")
        if value is _MISSING:
            operator, value = "=", operator
        op = str(operator).lower()
        if value is None and op in ("=", "=="):
            return self.where_null(column)
        if value is None and op in ("!=", "<>"):
            return self.where_not_null(column)
        try:
            build = _OPERATORS[op]
        except KeyError:
            raise QueryError(f"Unsupported operator [{operator}]") from None
        self._wheres.append(build(column_ref(column), value))
        return self

    def where_in(self, column: str, values: Iterable[Any]) -> SqlQueryBuilder:
        self._wheres.append(column_ref(column).in_(list(values)))
        return self

    def where_not_in(self, column: str, values: Iterable[Any]) -> SqlQueryBuilder:
        self._wheres.append(column_ref(column).not_in(list(values)))
        return self

    def where_null(self, column: str) -> SqlQueryBuilder:
        self._wheres.append(column_ref(column).is_(None))
        return self

    def where_not_null(self, column: str) -> SqlQueryBuilder:
        self._wheres.append(column_ref(column).is_not(None))
        return self

    def where_raw(self, sql: str, **params: Any) -> SqlQueryBuilder:
        self._wheres.append(sa.text(sql).bindparams(**params))
        return self

    def join(
        self, table: str, first: str, operator: str, second: str, *, left: bool = False
    ) -> SqlQueryBuilder:
        try:
            build = _OPERATORS[operator.lower()]
        except KeyError:
            raise QueryError(f"Unsupported join operator [{operator}]") from None
        self._joins.append((table, build(column_ref(first), column_ref(second)), left))
        return self

    def left_join(self, table: str, first: str, operator: str, second: str) -> SqlQueryBuilder:
        return self.join(table, first, operator, second, left=True)

    def order_by(self, column: str, direction: str = "asc") -> SqlQueryBuilder:
        ref = column_ref(column)
        self._orders.append(ref.desc() if direction.lower() == "desc" else ref.asc())
        return self

    def limit(self, count: int) -> SqlQueryBuilder:
        self._limit = count
        return self

    def offset(self, count: int) -> SqlQueryBuilder:
        self._offset = count
        return self

    def for_page(self, page: int, per_page: int) -> SqlQueryBuilder:
        page, per_page = max(1, page), max(1, per_page)
        return self.offset((page - 1) * per_page).limit(per_page)

    def lock(self, mode: str = "update") -> SqlQueryBuilder:
        """Row lock for the select: ``"update"`` (exclusive) or ``"share"``."""
        if mode.lower() not in LOCK_MODES:
            raise QueryError(f"Unsupported lock mode [{mode}]")
        self._lock = mode.lower()
        return self

    def clone(self) -> SqlQueryBuilder:
        twin = copy.copy(self)
        twin._columns = list(self._columns)
        twin._wheres = list(self._wheres)
        twin._joins = list(self._joins)
        twin._orders = list(self._orders)
        return twin

    # -- Compilation --------------------------------------------------------

    def _from_clause(self) -> sa.FromClause:
        source: sa.FromClause = sa.table(self._table)
        for table, onclause, left in self._joins:
            source = source.join(sa.table(table), onclause, isouter=left)
        return source

    def to_select(self) -> sa.Select[Any]:
        columns = self._columns or [sa.literal_column(f"{self._table}.*" if self._joins else "*")]
        stmt = sa.select(*columns).select_from(self._from_clause())
        if self._wheres:
            stmt = stmt.where(*self._wheres)
        if self._orders:
            stmt = stmt.order_by(*self._orders)
        if self._limit is not None:
            stmt = stmt.limit(self._limit)
        if self._offset is not None:
            stmt = stmt.offset(self._offset)
        if self._lock is not None:
            stmt = stmt.with_for_update(read=LOCK_MODES[self._lock])
        return stmt

    def to_sql(self) -> str:
        return str(self.to_select().compile(dialect=self._db.engine.dialect))

    def _write_table(self, keys: Iterable[str]) -> sa.TableClause:
        return sa.table(self._table, *(sa.column(k) for k in keys))

    def _require_plain(self, operation: str) -> None:
        if self._joins:
            raise QueryError(f"{operation}() is not supported on a joined query")

    # -- Reads --------------------------------------------------------------

    def get(self) -> list[dict[str, Any]]:
        return self._db.fetch_all(self.to_select())

    def first(self) -> dict[str, Any] | None:
        rows = self.clone().limit(1).get()
        return rows[0] if rows else None

    def count(self) -> int:
        stmt = sa.select(sa.func.count()).select_from(self._from_clause())
        if self._wheres:
            stmt = stmt.where(*self._wheres)
        return int(self._db.scalar(stmt) or 0)

    def exists(self) -> bool:
        stmt = sa.select(sa.literal(1)).select_from(self._from_clause())
        if self._wheres:
            stmt = stmt.where(*self._wheres)
        return self._db.scalar(stmt.limit(1)) is not None

    def pluck(self, column: str) -> list[Any]:
        twin = self.clone()
        twin._columns = [column_ref(column)]
        return [next(iter(row.values())) for row in twin.get()]

    # -- Writes -------------------------------------------------------------

    def insert(self, values: Mapping[str, Any]) -> bool:
        stmt = sa.insert(self._write_table(values)).values(dict(values))
        self._db.execute(stmt)
        return True

    def insert_get_id(self, values: Mapping[str, Any], key: str = "id") -> Any:
        """Insert one row and return its generated key."""
        stmt = sa.insert(self._write_table(values)).values(dict(values))
        if self._db.dialect_name == "postgresql":
            return self._db.execute(stmt.returning(sa.column(key))).returned
        return self._db.execute(stmt).lastrowid

    def insert_many(self, rows: Sequence[Mapping[str, Any]]) -> int:
        """Insert rows in one executemany when they share keys, else row by row."""
        if not rows:
            return 0
        keys = list(rows[0])
        if all(list(r) == keys for r in rows):
            self._db.execute(sa.insert(self._write_table(keys)), [dict(r) for r in rows])
        else:
            for row in rows:
                self.insert(row)
        return len(rows)

    def upsert(
        self,
        rows: Sequence[Mapping[str, Any]],
        unique_by: str | Sequence[str],
        update_columns: Sequence[str] | None = None,
    ) -> int:
        """Insert rows, updating ``update_columns`` when ``unique_by`` collides."""
        if not rows:
            return 0
        unique = [unique_by] if isinstance(unique_by, str) else list(unique_by)
        keys = list(dict.fromkeys(k for r in rows for k in r))
        update_columns = list(update_columns) if update_columns is not None else [
            k for k in keys if k not in unique
        ]
        table = self._write_table(keys)
        values = [dict(r) for r in rows]
        dialect = self._db.dialect_name

        if dialect in ("sqlite", "postgresql"):
            if dialect == "sqlite":
                from sqlalchemy.dialects.sqlite import insert as dialect_insert
            else:
                from sqlalchemy.dialects.postgresql import insert as dialect_insert
            stmt = dialect_insert(table).values(values)
            if update_columns:
                stmt = stmt.on_conflict_do_update(
                    index_elements=unique,
                    set_={c: stmt.excluded[c] for c in update_columns},
                )
            else:
                stmt = stmt.on_conflict_do_nothing(index_elements=unique)
        elif dialect in ("mysql", "mariadb"):
            from sqlalchemy.dialects.mysql import insert as dialect_insert

            stmt = dialect_insert(table).values(values)
            targets = update_columns or unique
            stmt = stmt.on_duplicate_key_update({c: stmt.inserted[c] for c in targets})
        else:
            raise QueryError(f"upsert() is not supported for dialect [{dialect}]")

        return self._db.execute(stmt).rowcount

    def update(self, values: Mapping[str, Any]) -> int:
        self._require_plain("update")
        if not values:
            return 0
        stmt = sa.update(self._write_table(values)).values(dict(values))
        if self._wheres:
            stmt = stmt.where(*self._wheres)
        return self._db.execute(stmt).rowcount

    def delete(self) -> int:
        self._require_plain("delete")
        stmt = sa.delete(sa.table(self._table))
        if self._wheres:
            stmt = stmt.where(*self._wheres)
        return self._db.execute(stmt).rowcount

    def __repr__(self) -> str:
        return f"SqlQueryBuilder(table={self._table!r}, wheres={len(self._wheres)})"
