"""
Protocols for the collaborators the mapping engine consumes.

The engine never imports a database driver. It talks to a
:class:`QueryBuilder` for a single table, a :class:`Connection` that hands
out builders and runs transactions, and an optional
:class:`ModelValidator`. :mod:`entityspine.db` ships the SQLAlchemy
implementation of the first two; :mod:`entityspine.validation` ships
validators.

Tags:
    protocols, typing, query-builder, connection, validator, entityspine

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any, Protocol, Self, TypeVar, runtime_checkable

T = TypeVar("T")


@runtime_checkable
class QueryBuilder(Protocol):
    """Fluent single-table query. Chainable methods mutate and return ``self``."""

    def select(self, *columns: str) -> Self: ...
    def select_raw(self, expression: str) -> Self: ...
    def where(self, column: str, operator: Any = ..., value: Any = ...) -> Self: ...
    def where_in(self, column: str, values: Iterable[Any]) -> Self: ...
    def where_not_in(self, column: str, values: Iterable[Any]) -> Self: ...
    def where_null(self, column: str) -> Self: ...
    def where_not_null(self, column: str) -> Self: ...
    def join(self, table: str, first: str, operator: str, second: str) -> Self: ...
    def order_by(self, column: str, direction: str = "asc") -> Self: ...
    def limit(self, count: int) -> Self: ...
    def offset(self, count: int) -> Self: ...
    def for_page(self, page: int, per_page: int) -> Self: ...
    def lock(self, mode: str = "update") -> Self: ...
    def clone(self) -> Self: ...

    def get(self) -> list[dict[str, Any]]: ...
    def first(self) -> dict[str, Any] | None: ...
    def count(self) -> int: ...
    def exists(self) -> bool: ...
    def pluck(self, column: str) -> list[Any]: ...

    def insert(self, values: Mapping[str, Any]) -> bool: ...
    def insert_get_id(self, values: Mapping[str, Any], key: str = "id") -> Any: ...
    def insert_many(self, rows: Sequence[Mapping[str, Any]]) -> int: ...
    def upsert(
        self,
        rows: Sequence[Mapping[str, Any]],
        unique_by: str | Sequence[str],
        update_columns: Sequence[str] | None = None,
    ) -> int: ...
    def update(self, values: Mapping[str, Any]) -> int: ...
    def delete(self) -> int: ...


@runtime_checkable
class Connection(Protocol):
    """Hands out table builders and scopes units of work."""

    def table(self, name: str) -> QueryBuilder: ...
    def transaction(self, callback: Callable[[Any], T]) -> T: ...
    def last_insert_id(self) -> Any: ...


@runtime_checkable
class ModelValidator(Protocol):
    """Validates an entity's attribute map against rules before persisting.

    Raises :class:`entityspine.errors.ValidationError` on failure.
    """

    def validate(
        self,
        entity: Any,
        data: Mapping[str, Any],
        rules: Mapping[str, Any],
        operation: str,
    ) -> None: ...
