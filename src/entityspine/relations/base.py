"""
Relation descriptor base.

A relation is declared once as a class attribute and is also the descriptor
that serves it on instances::

    class Post(Model):
        author = BelongsTo("User")
        comments = HasMany("Comment")

    post.comments            # lazy load (subject to the lazy-loading guard)
    Post.query(m).with_("comments").get()   # one batched query for all posts

Every variant implements the same three steps, so eager loading never needs
to know which kind it is dealing with:

    get_results(parent)               lazy load for one parent
    eager_load(parents, constraints)  one batched query → {key: result(s)}
    match(parents, results, name)     write each parent's slice into its cache

Key names are resolved once per bound relation into a frozen
:class:`RelationKeys` and are storage column names; values are read from
entities through their naming strategy.

Tags:
    relations, eager-loading, descriptors, entityspine

Doc-Types:
    api-reference
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from functools import partial
from typing import TYPE_CHECKING, Any

from entityspine.definition import resolve_model

if TYPE_CHECKING:
    from entityspine.model import Model
    from entityspine.query import ModelQuery

Constraint = Callable[["ModelQuery"], Any]


@dataclass(frozen=True)
class RelationKeys:
    """Resolved key column names for one relation."""

    foreign_key: str
    local_key: str
    link_table: str | None = None
    foreign_pivot_key: str | None = None
    related_pivot_key: str | None = None


def dict_key(value: Any) -> str:
    """Normalized map key so ``1`` and ``"1"`` from different columns meet."""
    return str(value)


class Relation:
    """Base class for relation descriptors."""

    many = False

    def __init__(self, related: Any):
        self._related_ref = related
        self.name: str | None = None
        self.owner: type | None = None
        self._keys: RelationKeys | None = None

    # -- Descriptor protocol ------------------------------------------------

    def __set_name__(self, owner: type, name: str) -> None:
        self.owner = owner
        self.name = name

    def __get__(self, instance: Any, owner: type | None = None) -> Any:
        if instance is None:
            return self
        return instance.get_relation(self.name)

    def __set__(self, instance: Any, value: Any) -> None:
        instance.set_relation(self.name, value)

    def bind(self, owner: type, name: str) -> Relation:
        """Copy of this relation bound to ``owner`` (a subclass may inherit it)."""
        bound = copy.copy(self)
        bound.owner = owner
        bound.name = name
        bound._keys = None
        return bound

    # -- Resolution ---------------------------------------------------------

    @property
    def related(self) -> type[Model]:
        return resolve_model(self._related_ref)

    @property
    def parent(self) -> type[Model]:
        if self.owner is None:
            raise RuntimeError("Relation is not attached to a model class")
        return self.owner

    @property
    def keys(self) -> RelationKeys:
        if self._keys is None:
            self._keys = self.resolve_keys()
        return self._keys

    def resolve_keys(self) -> RelationKeys:
        raise NotImplementedError

    # -- Loading ------------------------------------------------------------

    def new_query(self, parent: Model) -> ModelQuery:
        return self.related.query(parent.manager)

    def query_for(self, parent: Model) -> ModelQuery:
        """Related query constrained to ``parent``."""
        raise NotImplementedError

    def get_results(self, parent: Model) -> Any:
        raise NotImplementedError

    def eager_load(
        self, parents: Sequence[Model], constraints: Constraint | None = None
    ) -> dict[str, Any]:
        raise NotImplementedError

    def match(self, parents: Iterable[Model], results: dict[str, Any], name: str) -> None:
        key = self.parent_match_key()
        for parent in parents:
            value = parent.column_value(key)
            found = results.get(dict_key(value)) if value is not None else None
            parent.set_relation(name, self.empty_value() if found is None else found)

    def parent_match_key(self) -> str:
        """Column on the parent whose value indexes the eager-load map."""
        return self.keys.local_key

    def empty_value(self) -> Any:
        return [] if self.many else None

    # -- Helpers ------------------------------------------------------------

    @staticmethod
    def collect(entities: Iterable[Model], column: str) -> list[Any]:
        """Distinct non-null values of ``column``, in first-seen order."""
        seen: dict[str, Any] = {}
        for entity in entities:
            value = entity.column_value(column)
            if value is not None:
                seen.setdefault(dict_key(value), value)
        return list(seen.values())

    @staticmethod
    def apply_constraints(query: ModelQuery, constraints: Constraint | None) -> ModelQuery:
        if constraints is not None:
            constraints(query)
        return query

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, related={self._related_ref!r})"


class BoundRelation:
    """A relation paired with one parent entity.

    Forwards every relation method with the parent filled in, so
    ``post.relation("tags").attach([1, 2])`` calls ``BelongsToMany.attach(post, [1, 2])``.
    """

    def __init__(self, relation: Relation, parent: Model):
        self.relation = relation
        self.parent = parent

    def get(self) -> Any:
        return self.relation.get_results(self.parent)

    def query(self) -> ModelQuery:
        return self.relation.query_for(self.parent)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        method = getattr(self.relation, name)
        if callable(method):
            return partial(method, self.parent)
        return method

    def __repr__(self) -> str:
        return f"BoundRelation({self.relation!r}, parent={self.parent!r})"
