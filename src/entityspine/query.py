"""
Model-aware query facade.

``ModelQuery`` wraps a builder satisfying
:class:`~entityspine.protocols.QueryBuilder` (the database's
:class:`~entityspine.db.builder.SqlQueryBuilder` by default) for one model
type. It adds what a plain builder cannot know about: soft-delete
visibility, global scopes, local scopes, hydration into entities and
batched eager loading of relations.

Manifesto:
    Global scopes and the soft-delete filter are applied when the query
    executes, on a copy of the builder. The query object itself only holds
    what the caller asked for, so opting out of a scope never discards
    predicates added earlier.

Architecture:
    ::

        Post.query(manager)                       ModelQuery
          .with_("author", comments=recent)  ──▶  eager map {name: constraint}
          .where("published", True)          ──▶  builder (caller predicates)
          .popular()                         ──▶  local scope
          .get()
             │
             ├── prepared_builder(): clone + soft-delete filter + global scopes
             ├── rows ──▶ Post.new_from_row()  (hydrate, snapshot synced)
             └── per relation: eager_load(entities) → match(entities)

Examples:
    >>> page = Post.query(m).order_by("id").paginate(per_page=10, page=2)
    >>> page.total, page.last_page, [p.id for p in page.data]

    >>> Post.query(m).chunk(500, lambda posts, page: export(posts))

Guardrails:
    ❌ DON'T: chunk()/each()/lazy() over rows you modify or delete in the callback
    ✅ DO: iterate a stable ordering; paging is offset based and concurrent
       writes may skip or repeat rows

Tags:
    query, scopes, pagination, eager-loading, soft-deletes, entityspine

Doc-Types:
    api-reference
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import TYPE_CHECKING, Any

from entityspine.errors import ModelNotFoundError
from entityspine.logging import get_logger

if TYPE_CHECKING:
    from entityspine.protocols import QueryBuilder
    from entityspine.manager import ModelManager
    from entityspine.model import Model

logger = get_logger(__name__)

Constraint = Callable[["ModelQuery"], Any]


class TrashedMode(str, Enum):
    EXCLUDE = "exclude"
    INCLUDE = "include"
    ONLY = "only"


@dataclass
class Page:
    """One page of results plus the numbers needed to render a pager."""

    data: list[Any]
    total: int
    per_page: int
    current_page: int
    last_page: int
    from_: int | None
    to: int | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": [item.to_dict() if hasattr(item, "to_dict") else item for item in self.data],
            "total": self.total,
            "per_page": self.per_page,
            "current_page": self.current_page,
            "last_page": self.last_page,
            "from": self.from_,
            "to": self.to,
        }

    def __iter__(self) -> Iterator[Any]:
        return iter(self.data)

    def __len__(self) -> int:
        return len(self.data)


class ModelQuery:
    """Query for one model type bound to one manager."""

    def __init__(
        self,
        model: type[Model],
        manager: ModelManager,
        builder: QueryBuilder | None = None,
    ):
        self.model = model
        self.manager = manager
        self.definition = model.__definition__
        self.options = manager.options(model)
        if builder is None:
            builder = manager.database.table(self.definition.table)
        self.builder: QueryBuilder = builder
        self._eager: dict[str, Constraint | None] = {}
        self._trashed = TrashedMode.EXCLUDE
        self._apply_scopes = True
        self._excluded_scopes: set[str] = set()
        self._pivot: tuple[str, str] | None = None

    @property
    def table_name(self) -> str:
        return self.definition.table

    def qualify(self, column: str) -> str:
        return column if "." in column else f"{self.definition.table}.{column}"

    # -- Eager loading ------------------------------------------------------

    def with_(self, *relations: str | Mapping[str, Constraint | None], **constrained: Constraint) -> ModelQuery:
        """Request relations to load in one batched query each.

        ``with_("author", "tags")`` or ``with_(comments=lambda q: q.where("approved", True))``.
        Unknown names fail here, before any query runs.
        """
        requested: dict[str, Constraint | None] = {}
        for item in relations:
            if isinstance(item, Mapping):
                requested.update(item)
            else:
                requested[item] = None
        requested.update(constrained)
        for name, constraint in requested.items():
            self.definition.relation(name)
            self._eager[name] = constraint
        return self

    def without_eager(self, *names: str) -> ModelQuery:
        for name in names or list(self._eager):
            self._eager.pop(name, None)
        return self

    # -- Scopes / trashed ---------------------------------------------------

    def with_trashed(self) -> ModelQuery:
        self._trashed = TrashedMode.INCLUDE
        return self

    def only_trashed(self) -> ModelQuery:
        self._trashed = TrashedMode.ONLY
        return self

    def without_trashed(self) -> ModelQuery:
        self._trashed = TrashedMode.EXCLUDE
        return self

    def without_global_scopes(self, names: Sequence[str] | None = None) -> ModelQuery:
        """Skip every global scope, or only the ones named."""
        if names is None:
            self._apply_scopes = False
        else:
            self._excluded_scopes.update(names)
        return self

    def without_global_scope(self, name: str) -> ModelQuery:
        return self.without_global_scopes([name])

    def extract_pivot(self, prefix: str, relation: str) -> ModelQuery:
        """Move ``prefix``-ed columns of each row into the ``relation`` cache entry."""
        self._pivot = (prefix, relation)
        return self

    def prepared_builder(self) -> QueryBuilder:
        """Builder copy with the soft-delete filter and global scopes applied."""
        builder = self.builder.clone()
        if self.options.soft_deletes:
            marker = self.qualify(self.options.deleted_at_column)
            if self._trashed is TrashedMode.EXCLUDE:
                builder.where_null(marker)
            elif self._trashed is TrashedMode.ONLY:
                builder.where_not_null(marker)
        if self._apply_scopes:
            self.definition.scopes.apply(builder, self, exclude=self._excluded_scopes)
        return builder

    # -- Builder passthrough --------------------------------------------------

    def where(self, column: str, *args: Any) -> ModelQuery:
        self.builder.where(column, *args)
        return self

    def where_in(self, column: str, values: Any) -> ModelQuery:
        self.builder.where_in(column, values)
        return self

    def where_not_in(self, column: str, values: Any) -> ModelQuery:
        self.builder.where_not_in(column, values)
        return self

    def where_null(self, column: str) -> ModelQuery:
        self.builder.where_null(column)
        return self

    def where_not_null(self, column: str) -> ModelQuery:
        self.builder.where_not_null(column)
        return self

    def order_by(self, column: str, direction: str = "asc") -> ModelQuery:
        self.builder.order_by(column, direction)
        return self

    def limit(self, count: int) -> ModelQuery:
        self.builder.limit(count)
        return self

    def offset(self, count: int) -> ModelQuery:
        self.builder.offset(count)
        return self

    def lock_for_update(self) -> ModelQuery:
        self.builder.lock("update")
        return self

    def shared_lock(self) -> ModelQuery:
        self.builder.lock("share")
        return self

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        scope = self.definition.local_scopes.get(name)
        if scope is not None:
            return partial(scope, self)
        target = getattr(self.builder, name, None)
        if target is None:
            raise AttributeError(
                f"{type(self).__name__} for [{self.definition.name}] has no method or scope [{name}]"
            )
        if not callable(target):
            return target

        def passthrough(*args: Any, **kwargs: Any) -> Any:
            result = target(*args, **kwargs)
            return self if result is self.builder else result

        return passthrough

    def clone(self) -> ModelQuery:
        twin = ModelQuery(self.model, self.manager, self.builder.clone())
        twin._eager = dict(self._eager)
        twin._trashed = self._trashed
        twin._apply_scopes = self._apply_scopes
        twin._excluded_scopes = set(self._excluded_scopes)
        twin._pivot = self._pivot
        return twin

    # -- Reads --------------------------------------------------------------

    def hydrate(self, rows: Sequence[Mapping[str, Any]]) -> list[Model]:
        entities = []
        for row in rows:
            pivot = None
            if self._pivot is not None:
                prefix, _ = self._pivot
                row = dict(row)
                pivot = {k: row.pop(k) for k in list(row) if k.startswith(prefix)}
            entity = self.model.new_from_row(self.manager, row)
            if pivot:
                entity.set_relation(self._pivot[1], pivot)
            entities.append(entity)
        return entities

    def _run(self, builder: QueryBuilder) -> list[Model]:
        entities = self.hydrate(builder.get())
        self.eager_load(entities)
        return entities

    def get(self) -> list[Model]:
        return self._run(self.prepared_builder())

    def all(self) -> list[Model]:
        return self.get()

    def first(self) -> Model | None:
        results = self._run(self.prepared_builder().limit(1))
        return results[0] if results else None

    def first_or_fail(self) -> Model:
        result = self.first()
        if result is None:
            raise ModelNotFoundError(self.definition.name, self.definition.table)
        return result

    def find(self, key: Any) -> Model | None:
        return self.clone().where(self.qualify(self.definition.primary_key), key).first()

    def find_or_fail(self, key: Any) -> Model:
        result = self.find(key)
        if result is None:
            raise ModelNotFoundError(self.definition.name, self.definition.table, key)
        return result

    def find_many(self, keys: Sequence[Any]) -> list[Model]:
        if not keys:
            return []
        return self.clone().where_in(self.qualify(self.definition.primary_key), keys).get()

    def count(self) -> int:
        return self.prepared_builder().count()

    def exists(self) -> bool:
        return self.prepared_builder().exists()

    def pluck(self, column: str) -> list[Any]:
        return self.prepared_builder().pluck(column)

    def paginate(self, per_page: int = 15, page: int = 1) -> Page:
        per_page, page = max(1, per_page), max(1, page)
        total = self.count()
        data = self._run(self.prepared_builder().for_page(page, per_page))
        from_ = (page - 1) * per_page + 1 if data else None
        to = from_ + len(data) - 1 if from_ is not None else None
        return Page(
            data=data,
            total=total,
            per_page=per_page,
            current_page=page,
            last_page=math.ceil(total / per_page),
            from_=from_,
            to=to,
        )

    def chunk(self, size: int, callback: Callable[[list[Model], int], Any]) -> None:
        """Feed ``callback(results, page)`` batches of ``size`` until exhausted.

        Stops on an empty or short batch, or when the callback returns ``False``.
        """
        size = max(1, size)
        page = 1
        while True:
            results = self._run(self.prepared_builder().for_page(page, size))
            if not results:
                break
            if callback(results, page) is False:
                break
            if len(results) < size:
                break
            page += 1

    def each(self, callback: Callable[[Model], Any], size: int = 100) -> None:
        """Call ``callback(entity)`` per row, batching reads; ``False`` stops."""

        def run_batch(results: list[Model], page: int) -> bool:
            for entity in results:
                if callback(entity) is False:
                    return False
            return True

        self.chunk(size, run_batch)

    def lazy(self, size: int = 100) -> Iterator[Model]:
        """Generator over all matching entities, reading ``size`` rows at a time."""
        size = max(1, size)
        page = 1
        while True:
            results = self._run(self.prepared_builder().for_page(page, size))
            yield from results
            if len(results) < size:
                return
            page += 1

    def eager_load(self, entities: list[Model]) -> None:
        if not entities or not self._eager:
            return
        for name, constraint in self._eager.items():
            relation = self.definition.relation(name)
            results = relation.eager_load(entities, constraint)
            relation.match(entities, results, name)
            logger.debug(
                "relation_eager_loaded",
                model=self.definition.name,
                relation=name,
                parents=len(entities),
            )

    # -- Bulk writes --------------------------------------------------------

    def _storage(self, values: Mapping[str, Any]) -> dict[str, Any]:
        return self.options.naming.storage(values)

    def insert_many(self, rows: Sequence[Mapping[str, Any]]) -> int:
        """Insert raw rows in one statement; no hooks, casts or timestamps."""
        return self.manager.database.table(self.definition.table).insert_many(
            [self._storage(r) for r in rows]
        )

    def upsert(
        self,
        rows: Sequence[Mapping[str, Any]],
        unique_by: str | Sequence[str],
        update_columns: Sequence[str] | None = None,
    ) -> int:
        return self.manager.database.table(self.definition.table).upsert(
            [self._storage(r) for r in rows], unique_by, update_columns
        )

    def update_where(self, conditions: Mapping[str, Any], values: Mapping[str, Any]) -> int:
        """Bulk update rows matching this query plus ``conditions``; no hooks."""
        builder = self.prepared_builder()
        for column, value in self._storage(conditions).items():
            builder.where(column, value)
        return builder.update(self._storage(values))

    def delete_where(self, conditions: Mapping[str, Any] | None = None) -> int:
        """Bulk physical delete of rows matching this query plus ``conditions``; no hooks."""
        builder = self.prepared_builder()
        for column, value in self._storage(conditions or {}).items():
            builder.where(column, value)
        return builder.delete()

    def __repr__(self) -> str:
        return f"ModelQuery({self.definition.name}, eager={list(self._eager)})"
