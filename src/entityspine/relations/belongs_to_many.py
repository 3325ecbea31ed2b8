"""
Many-to-many through a link table.

Architecture:
    ::

        posts                 post_tag (link)                  tags
        ┌────┐   parent_key   ┌─────────────────────┐  related  ┌────┐
        │ id │ ◀──────────────│ post_id  (foreign)  │   key     │ id │
        └────┘                │ tag_id   (related)  │──────────▶└────┘
                              │ created_at ...      │
                              └─────────────────────┘

    SELECT tags.*, post_tag.post_id AS pivot_post_id, ...
      FROM tags JOIN post_tag ON post_tag.tag_id = tags.id
     WHERE post_tag.post_id IN (...)

    Each related entity carries its link row under the reserved ``pivot``
    relation, with every key prefixed ``pivot_``.

Examples:
    >>> post.relation("tags").attach([1, 2], {"weight": 5})
    >>> post.relation("tags").sync([2, 3])
    SyncResult(attached=[3], detached=[1], updated=[2])
    >>> post.relation("tags").toggle([3, 4])
    SyncResult(attached=[4], detached=[3], updated=[])

Tags:
    relations, many-to-many, pivot, entityspine

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from entityspine.naming import to_snake
from entityspine.relations.base import Constraint, Relation, RelationKeys, dict_key
from entityspine.timestamps import storage_now

if TYPE_CHECKING:
    from entityspine.protocols import QueryBuilder
    from entityspine.model import Model
    from entityspine.query import ModelQuery

PIVOT_PREFIX = "pivot_"
PIVOT_RELATION = "pivot"


@dataclass
class SyncResult:
    """Related ids touched by a ``sync`` or ``toggle``."""

    attached: list[Any] = field(default_factory=list)
    detached: list[Any] = field(default_factory=list)
    updated: list[Any] = field(default_factory=list)


class BelongsToMany(Relation):
    """``Post.tags = BelongsToMany("Tag")``.

    Defaults: link table is the two snake-cased model names sorted and joined
    with ``_`` (``post_tag``); pivot keys are ``<snake name>_<key>`` for each
    side; ``created_at``/``updated_at`` pivot columns are selected and filled.
    """

    many = True

    def __init__(
        self,
        related: Any,
        table: str | None = None,
        foreign_pivot_key: str | None = None,
        related_pivot_key: str | None = None,
        parent_key: str | None = None,
        related_key: str | None = None,
        pivot_columns: Iterable[str] = ("created_at", "updated_at"),
    ):
        super().__init__(related)
        self.table = table
        self.foreign_pivot_key = foreign_pivot_key
        self.related_pivot_key = related_pivot_key
        self.parent_key = parent_key
        self.related_key = related_key
        self.pivot_columns = tuple(pivot_columns)

    def with_pivot(self, *columns: str) -> BelongsToMany:
        """Copy of this relation that also selects ``columns`` from the link table."""
        twin = self.bind(self.owner, self.name) if self.owner else self
        twin.pivot_columns = tuple(dict.fromkeys(self.pivot_columns + columns))
        return twin

    def resolve_keys(self) -> RelationKeys:
        parent_def = self.parent.__definition__
        related_def = self.related.__definition__
        parent_key = self.parent_key or parent_def.primary_key
        related_key = self.related_key or related_def.primary_key
        parent_name, related_name = to_snake(parent_def.name), to_snake(related_def.name)
        return RelationKeys(
            foreign_key=related_key,
            local_key=parent_key,
            link_table=self.table or "_".join(sorted([parent_name, related_name])),
            foreign_pivot_key=self.foreign_pivot_key or f"{parent_name}_{parent_key}",
            related_pivot_key=self.related_pivot_key or f"{related_name}_{related_key}",
        )

    # -- Loading ------------------------------------------------------------

    def _link_columns(self) -> list[str]:
        keys = self.keys
        return list(dict.fromkeys([keys.foreign_pivot_key, keys.related_pivot_key, *self.pivot_columns]))

    def _joined_query(self, parent: Model) -> ModelQuery:
        keys = self.keys
        related_table = self.related.__definition__.table
        query = self.new_query(parent)
        query.select(f"{related_table}.*")
        for column in self._link_columns():
            query.add_select(f"{keys.link_table}.{column}", f"{PIVOT_PREFIX}{column}")
        query.join(
            keys.link_table,
            f"{keys.link_table}.{keys.related_pivot_key}",
            "=",
            f"{related_table}.{keys.foreign_key}",
        )
        return query.extract_pivot(PIVOT_PREFIX, PIVOT_RELATION)

    def query_for(self, parent: Model) -> ModelQuery:
        keys = self.keys
        return self._joined_query(parent).where(
            f"{keys.link_table}.{keys.foreign_pivot_key}", parent.column_value(keys.local_key)
        )

    def get_results(self, parent: Model) -> list[Model]:
        if parent.column_value(self.keys.local_key) is None:
            return []
        return self.query_for(parent).get()

    def eager_load(
        self, parents: Sequence[Model], constraints: Constraint | None = None
    ) -> dict[str, list[Model]]:
        keys = self.keys
        values = self.collect(parents, keys.local_key)
        if not values:
            return {}
        query = self._joined_query(parents[0]).where_in(
            f"{keys.link_table}.{keys.foreign_pivot_key}", values
        )
        grouped: dict[str, list[Model]] = {}
        alias = f"{PIVOT_PREFIX}{keys.foreign_pivot_key}"
        for related in self.apply_constraints(query, constraints).get():
            pivot = related.get_loaded_relation(PIVOT_RELATION) or {}
            if pivot.get(alias) is not None:
                grouped.setdefault(dict_key(pivot[alias]), []).append(related)
        return grouped

    # -- Link table mutations -----------------------------------------------

    def _link(self, parent: Model) -> QueryBuilder:
        return parent.manager.database.table(self.keys.link_table)

    def _parent_id(self, parent: Model, operation: str) -> Any:
        value = parent.column_value(self.keys.local_key)
        if value is None:
            raise ValueError(f"Cannot {operation} without a parent key value.")
        return value

    def _timestamp(self, parent: Model) -> str:
        dates = parent.options.dates
        return storage_now(dates.format, dates.timezone)

    def _payload(
        self, parent_id: Any, related_id: Any, attributes: Mapping[str, Any], timestamp: str
    ) -> dict[str, Any]:
        keys = self.keys
        payload = {keys.foreign_pivot_key: parent_id, keys.related_pivot_key: related_id}
        payload.update(attributes)
        for column in ("created_at", "updated_at"):
            if column in self.pivot_columns:
                payload.setdefault(column, timestamp)
        return payload

    def _normalize(self, ids: Any, attributes: Mapping[str, Any] | None = None) -> dict[Any, dict[str, Any]]:
        """ids | id | {id: attrs} -> {id: attrs}."""
        attributes = dict(attributes or {})
        if isinstance(ids, Mapping):
            return {key: dict(value or {}) for key, value in ids.items()}
        if isinstance(ids, (str, bytes, int)) or not isinstance(ids, Iterable):
            ids = [ids]
        normalized: dict[Any, dict[str, Any]] = {}
        for item in ids:
            related_id = item.column_value(self.keys.foreign_key) if hasattr(item, "column_value") else item
            normalized[related_id] = dict(attributes)
        return normalized

    def attach(self, parent: Model, ids: Any, attributes: Mapping[str, Any] | None = None) -> list[Any]:
        """Insert one link row per id. Existing links are not checked."""
        parent_id = self._parent_id(parent, "attach")
        pairs = self._normalize(ids, attributes)
        timestamp = self._timestamp(parent)
        rows = [self._payload(parent_id, rid, attrs, timestamp) for rid, attrs in pairs.items()]
        self._link(parent).insert_many(rows)
        parent.forget_relation(self.name)
        return list(pairs)

    def detach(self, parent: Model, ids: Any = None) -> int:
        """Delete link rows for ``parent`` (only those for ``ids`` when given)."""
        parent_id = parent.column_value(self.keys.local_key)
        if parent_id is None:
            return 0
        builder = self._link(parent).where(self.keys.foreign_pivot_key, parent_id)
        if ids is not None:
            builder.where_in(self.keys.related_pivot_key, list(self._normalize(ids)))
        deleted = builder.delete()
        parent.forget_relation(self.name)
        return deleted

    def linked_ids(self, parent: Model) -> list[Any]:
        parent_id = self._parent_id(parent, "read links")
        return (
            self._link(parent)
            .where(self.keys.foreign_pivot_key, parent_id)
            .pluck(self.keys.related_pivot_key)
        )

    def update_existing_pivot(
        self, parent: Model, related_id: Any, attributes: Mapping[str, Any], timestamp: str | None = None
    ) -> int:
        keys = self.keys
        values = dict(attributes)
        if "updated_at" in self.pivot_columns:
            values.setdefault("updated_at", timestamp or self._timestamp(parent))
        if not values:
            return 0
        return (
            self._link(parent)
            .where(keys.foreign_pivot_key, self._parent_id(parent, "update pivot"))
            .where(keys.related_pivot_key, related_id)
            .update(values)
        )

    def sync(self, parent: Model, ids: Any, detaching: bool = True) -> SyncResult:
        """Make the linked set equal ``ids``; calling it twice attaches/detaches nothing."""
        pairs = self._normalize(ids)
        existing = {dict_key(v): v for v in self.linked_ids(parent)}
        target = {dict_key(k): k for k in pairs}

        result = SyncResult()
        if detaching:
            result.detached = [existing[k] for k in existing if k not in target]
            if result.detached:
                self.detach(parent, result.detached)

        timestamp = self._timestamp(parent)
        to_attach = {target[k]: pairs[target[k]] for k in target if k not in existing}
        if to_attach:
            self.attach(parent, to_attach)
            result.attached = list(to_attach)

        for key in target:
            if key in existing:
                self.update_existing_pivot(parent, existing[key], pairs[target[key]], timestamp)
                result.updated.append(existing[key])

        parent.forget_relation(self.name)
        return result

    def toggle(self, parent: Model, ids: Any) -> SyncResult:
        """Detach each linked id, attach each unlinked one."""
        parent_id = self._parent_id(parent, "toggle")
        result = SyncResult()
        for related_id, attrs in self._normalize(ids).items():
            linked = (
                self._link(parent)
                .where(self.keys.foreign_pivot_key, parent_id)
                .where(self.keys.related_pivot_key, related_id)
                .exists()
            )
            if linked:
                self.detach(parent, [related_id])
                result.detached.append(related_id)
            else:
                self.attach(parent, {related_id: attrs})
                result.attached.append(related_id)
        parent.forget_relation(self.name)
        return result
