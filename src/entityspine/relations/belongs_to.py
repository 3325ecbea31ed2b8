"""Many-to-one: the parent row holds the foreign key."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from entityspine.naming import to_snake
from entityspine.relations.base import Constraint, Relation, RelationKeys, dict_key

if TYPE_CHECKING:
    from entityspine.model import Model
    from entityspine.query import ModelQuery


class BelongsTo(Relation):
    """``Post.author = BelongsTo("User")`` reads ``posts.user_id`` → ``users.id``.

    ``foreign_key`` defaults to ``<related snake name>_<related key>`` and
    ``owner_key`` to the related primary key.
    """

    def __init__(self, related: Any, foreign_key: str | None = None, owner_key: str | None = None):
        super().__init__(related)
        self.foreign_key = foreign_key
        self.owner_key = owner_key

    def resolve_keys(self) -> RelationKeys:
        related_def = self.related.__definition__
        owner_key = self.owner_key or related_def.primary_key
        foreign_key = self.foreign_key or f"{to_snake(related_def.name)}_{owner_key}"
        return RelationKeys(foreign_key=foreign_key, local_key=owner_key)

    def parent_match_key(self) -> str:
        return self.keys.foreign_key

    def query_for(self, parent: Model) -> ModelQuery:
        return self.new_query(parent).where(
            self.keys.local_key, parent.column_value(self.keys.foreign_key)
        )

    def get_results(self, parent: Model) -> Model | None:
        if parent.column_value(self.keys.foreign_key) is None:
            return None
        return self.query_for(parent).first()

    def eager_load(
        self, parents: Sequence[Model], constraints: Constraint | None = None
    ) -> dict[str, Model]:
        keys = self.collect(parents, self.keys.foreign_key)
        if not keys:
            return {}
        query = self.new_query(parents[0]).where_in(self.keys.local_key, keys)
        results: dict[str, Model] = {}
        for owner in self.apply_constraints(query, constraints).get():
            results.setdefault(dict_key(owner.column_value(self.keys.local_key)), owner)
        return results

    def associate(self, parent: Model, owner: Model | Any) -> Model:
        """Point ``parent``'s foreign key at ``owner`` (an entity or a raw key)."""
        value = owner.column_value(self.keys.local_key) if hasattr(owner, "column_value") else owner
        parent.set_column_value(self.keys.foreign_key, value)
        if hasattr(owner, "column_value"):
            parent.set_relation(self.name, owner)
        else:
            parent.forget_relation(self.name)
        return parent

    def dissociate(self, parent: Model) -> Model:
        parent.set_column_value(self.keys.foreign_key, None)
        parent.set_relation(self.name, None)
        return parent
