"""
Global and local query scopes.

Global scopes are named constraints applied to every query a model type
issues (including the update/delete predicates of persistence) unless a
query opts out with ``without_global_scopes()``. They are registered in the
type's own :class:`ScopeRegistry`, never in module-level state, and are
applied lazily when the query executes, so opting out never discards
predicates that were already added.

Local scopes are reusable query fragments invoked by name on a query::

    class Post(Model):
        @local_scope
        def published(query, since=None):
            query.where("published", True)
            if since is not None:
                query.where("published_at", ">=", since)

    Post.query(manager).published(since="2024-01-01").get()

Tags:
    scopes, multi-tenancy, query, entityspine

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from typing import Any

GlobalScope = Callable[[Any, Any], Any]


class ScopeRegistry:
    """Ordered, named global scopes for one model type."""

    def __init__(self, inherited: ScopeRegistry | None = None):
        self._scopes: dict[str, GlobalScope] = dict(inherited._scopes) if inherited else {}

    def add(self, name: str, scope: GlobalScope) -> None:
        self._scopes[name] = scope

    def remove(self, name: str) -> None:
        self._scopes.pop(name, None)

    def names(self) -> list[str]:
        return list(self._scopes)

    def apply(self, builder: Any, query: Any, exclude: Iterable[str] = ()) -> None:
        """Run every scope not named in ``exclude`` against ``builder``."""
        skipped = set(exclude)
        for name, scope in self._scopes.items():
            if name not in skipped:
                scope(builder, query)

    def __contains__(self, name: object) -> bool:
        return name in self._scopes

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._scopes))

    def __len__(self) -> int:
        return len(self._scopes)


class LocalScope:
    """A named query fragment; called with the query plus caller arguments."""

    def __init__(self, func: Callable[..., Any]):
        self.func = func
        self.name = func.__name__
        self.__doc__ = func.__doc__

    def __call__(self, query: Any, *args: Any, **kwargs: Any) -> Any:
        self.func(query, *args, **kwargs)
        return query

    def __repr__(self) -> str:
        return f"LocalScope({self.name!r})"


def local_scope(func: Callable[..., Any]) -> LocalScope:
    """Declare a local scope on a model class."""
    return LocalScope(func)


class TenantScope:
    """Filters on ``column`` by the manager's current tenant id.

    A manager with no tenant set leaves queries unfiltered.
    """

    name = "tenant"

    def __init__(self, column: str = "tenant_id"):
        self.column = column

    def __call__(self, builder: Any, query: Any) -> None:
        tenant_id = query.manager.tenant_id
        if tenant_id is not None:
            builder.where(f"{query.table_name}.{self.column}", tenant_id)

    def __repr__(self) -> str:
        return f"TenantScope(column={self.column!r})"
