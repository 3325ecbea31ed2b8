"""One-to-one and one-to-many: the related rows hold the foreign key."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from entityspine.naming import to_snake
from entityspine.relations.base import Constraint, Relation, RelationKeys, dict_key

if TYPE_CHECKING:
    from entityspine.model import Model
    from entityspine.query import ModelQuery


class HasOneOrMany(Relation):
    """Shared key resolution and batching for :class:`HasOne` and :class:`HasMany`.

    ``foreign_key`` defaults to ``<parent snake name>_<parent key>`` and
    ``local_key`` to the parent primary key.
    """

    def __init__(self, related: Any, foreign_key: str | None = None, local_key: str | None = None):
        super().__init__(related)
        self.foreign_key = foreign_key
        self.local_key = local_key

    def resolve_keys(self) -> RelationKeys:
        parent_def = self.parent.__definition__
        local_key = self.local_key or parent_def.primary_key
        foreign_key = self.foreign_key or f"{to_snake(parent_def.name)}_{local_key}"
        return RelationKeys(foreign_key=foreign_key, local_key=local_key)

    def query_for(self, parent: Model) -> ModelQuery:
        return self.new_query(parent).where(
            self.keys.foreign_key, parent.column_value(self.keys.local_key)
        )

    def eager_load(
        self, parents: Sequence[Model], constraints: Constraint | None = None
    ) -> dict[str, Any]:
        keys = self.collect(parents, self.keys.local_key)
        if not keys:
            return {}
        query = self.new_query(parents[0]).where_in(self.keys.foreign_key, keys)
        grouped: dict[str, list[Model]] = {}
        for child in self.apply_constraints(query, constraints).get():
            value = child.column_value(self.keys.foreign_key)
            if value is not None:
                grouped.setdefault(dict_key(value), []).append(child)
        return self.reduce(grouped)

    def reduce(self, grouped: dict[str, list[Model]]) -> dict[str, Any]:
        return grouped

    def make(self, parent: Model, attributes: Mapping[str, Any] | None = None) -> Model:
        """New unsaved related entity with the foreign key pointing at ``parent``."""
        child = self.related(parent.manager, attributes or {})
        child.set_column_value(self.keys.foreign_key, parent.column_value(self.keys.local_key))
        return child

    def create(self, parent: Model, attributes: Mapping[str, Any] | None = None) -> Model:
        child = self.make(parent, attributes)
        child.save()
        parent.forget_relation(self.name)
        return child


class HasOne(HasOneOrMany):
    """``User.profile = HasOne("Profile")``; the first match per parent wins."""

    def get_results(self, parent: Model) -> Model | None:
        if parent.column_value(self.keys.local_key) is None:
            return None
        return self.query_for(parent).first()

    def reduce(self, grouped: dict[str, list[Model]]) -> dict[str, Any]:
        return {key: children[0] for key, children in grouped.items()}


class HasMany(HasOneOrMany):
    """``User.posts = HasMany("Post")``; results keep query order."""

    many = True

    def get_results(self, parent: Model) -> list[Model]:
        if parent.column_value(self.keys.local_key) is None:
            return []
        return self.query_for(parent).get()
