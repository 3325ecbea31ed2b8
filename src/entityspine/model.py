"""
Model: the entity base class.

Manifesto:
    A model class is a declaration: table, keys, casts, relations, scopes
    and policy overrides are class attributes read once into a
    :class:`~entityspine.definition.ModelDefinition`. An instance is a small
    composition: an :class:`~entityspine.attributes.AttributeStore`, a
    relation cache, a lifecycle state, and the manager it belongs to.
    Writing rows is the :class:`~entityspine.persistence.PersistenceEngine`'s
    job; the model only forwards to it.

Architecture:
    ::

        class Post(Model):                      Post.__definition__
            table = "posts"                      ├── casts      {published: BooleanCast}
            fillable = ("title", "body")         ├── relations  {author: BelongsTo, tags: BelongsToMany}
            casts = {"published": "bool"}        ├── accessors / mutators
            soft_deletes = True                  ├── local_scopes {published_only}
            author = BelongsTo("User")           └── scopes (global ScopeRegistry)
            tags = BelongsToMany("Tag")

        post = Post(manager, {...})
        ┌─────────────────────────────────────────────┐
        │ _store      AttributeStore (attrs/snapshot) │
        │ _relations  {"author": User, "pivot": {...}}│
        │ _state      TRANSIENT → PERSISTED → ...     │
        │ _manager    ModelManager                    │
        └─────────────────────────────────────────────┘

    Attribute access reads through the store: ``post.title`` applies the
    accessor or cast, ``post.title = "x"`` applies the mutator or cast.
    Names of class attributes and methods (``table``, ``casts``, ``save``,
    ``key``, ...) are reserved; use ``post["column"]`` for columns that
    collide with them.

Examples:
    >>> post = Post.create(manager, {"title": "Hello", "body": "..."})
    >>> post.title = "Hello again"
    >>> post.is_dirty("title")
    True
    >>> post.save()
    True
    >>> Post.query(manager).with_("author").where("published", True).get()

Tags:
    model, entity, active-record, entityspine

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

from entityspine.attributes import AttributeStore
from entityspine.casts import dumps
from entityspine.definition import ModelDefinition, ModelOptions, build_definition, register_model
from entityspine.errors import LazyLoadingViolationError
from entityspine.logging import get_logger
from entityspine.query import ModelQuery
from entityspine.relations.base import BoundRelation

if TYPE_CHECKING:
    from entityspine.manager import ModelManager
    from entityspine.scopes import GlobalScope

logger = get_logger(__name__)


class LifecycleState(str, Enum):
    TRANSIENT = "transient"
    PERSISTED = "persisted"
    SOFT_DELETED = "soft_deleted"
    REMOVED = "removed"


class Model:
    """Base class for entities. Subclass it and declare the table."""

    __definition__: ClassVar[ModelDefinition]

    table: ClassVar[str | None] = None
    primary_key: ClassVar[str] = "id"
    key_type: ClassVar[str] = "int"
    incrementing: ClassVar[bool | None] = None

    fillable: ClassVar[Sequence[str]] = ()
    guarded: ClassVar[Sequence[str]] = ()
    hidden: ClassVar[Sequence[str]] = ()
    visible: ClassVar[Sequence[str]] = ()
    casts: ClassVar[Mapping[str, Any]] = {}

    observers: ClassVar[Sequence[Any]] = ()
    global_scopes: ClassVar[Mapping[str, GlobalScope]] = {}
    tenant_column: ClassVar[str | None] = None

    # None means "use the manager's settings"
    timestamps: ClassVar[bool | None] = None
    created_at_column: ClassVar[str | None] = None
    updated_at_column: ClassVar[str | None] = None
    soft_deletes: ClassVar[bool | None] = None
    deleted_at_column: ClassVar[str | None] = None
    enforce_fillable: ClassVar[bool | None] = None
    throw_on_mass_assignment: ClassVar[bool | None] = None
    prevent_lazy_loading: ClassVar[bool | None] = None
    allow_lazy_loading_in_testing: ClassVar[bool | None] = None
    lazy_allowed: ClassVar[Sequence[str]] = ()
    date_format: ClassVar[str | None] = None
    timezone: ClassVar[str | None] = None
    naming: ClassVar[str | None] = None

    optimistic_locking: ClassVar[bool] = False
    lock_column: ClassVar[str | None] = None

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        cls.__definition__ = build_definition(cls)
        register_model(cls)

    def __init__(self, manager: ModelManager, attributes: Mapping[str, Any] | None = None):
        options = manager.options(type(self))
        definition = type(self).__definition__
        self._manager = manager
        self._options = options
        self._store = AttributeStore(
            owner=self,
            casts=definition.casts,
            accessors=definition.accessors,
            mutators=definition.mutators,
            dates=options.dates,
            guard=options.guard,
        )
        self._relations: dict[str, Any] = {}
        self._state = LifecycleState.TRANSIENT
        if attributes:
            self.fill(attributes)

    # -- Construction -------------------------------------------------------

    @classmethod
    def new_from_row(cls, manager: ModelManager, row: Mapping[str, Any]) -> Model:
        """Entity for a row read from storage: raw values, clean snapshot."""
        entity = cls(manager)
        entity.hydrate(row)
        return entity

    @classmethod
    def build(cls, manager: ModelManager, attributes: Mapping[str, Any] | None = None) -> Model:
        return cls(manager, attributes)

    @classmethod
    def create(cls, manager: ModelManager, attributes: Mapping[str, Any] | None = None) -> Model:
        entity = cls(manager, attributes)
        entity.save()
        return entity

    # -- Query entry points -------------------------------------------------

    @classmethod
    def query(cls, manager: ModelManager) -> ModelQuery:
        return ModelQuery(cls, manager)

    @classmethod
    def with_(cls, manager: ModelManager, *relations: Any, **constrained: Any) -> ModelQuery:
        return cls.query(manager).with_(*relations, **constrained)

    @classmethod
    def with_trashed(cls, manager: ModelManager) -> ModelQuery:
        return cls.query(manager).with_trashed()

    @classmethod
    def only_trashed(cls, manager: ModelManager) -> ModelQuery:
        return cls.query(manager).only_trashed()

    @classmethod
    def without_global_scopes(cls, manager: ModelManager, names: Sequence[str] | None = None) -> ModelQuery:
        return cls.query(manager).without_global_scopes(names)

    @classmethod
    def all(cls, manager: ModelManager) -> list[Model]:
        return cls.query(manager).get()

    @classmethod
    def find(cls, manager: ModelManager, key: Any) -> Model | None:
        return cls.query(manager).find(key)

    @classmethod
    def find_or_fail(cls, manager: ModelManager, key: Any) -> Model:
        return cls.query(manager).find_or_fail(key)

    @classmethod
    def add_global_scope(cls, name: str, scope: GlobalScope) -> None:
        cls.__definition__.scopes.add(name, scope)

    @classmethod
    def remove_global_scope(cls, name: str) -> None:
        cls.__definition__.scopes.remove(name)

    # -- Context ------------------------------------------------------------

    @property
    def manager(self) -> ModelManager:
        return self._manager

    @property
    def options(self) -> ModelOptions:
        return self._options

    @property
    def store(self) -> AttributeStore:
        return self._store

    @property
    def table_name(self) -> str:
        return type(self).__definition__.table

    @property
    def exists(self) -> bool:
        return self._state in (LifecycleState.PERSISTED, LifecycleState.SOFT_DELETED)

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def key(self) -> Any:
        return self.column_value(type(self).__definition__.primary_key)

    def trashed(self) -> bool:
        return self._options.soft_deletes and self.column_value(self._options.deleted_at_column) is not None

    def mark_persisted(self) -> None:
        self._state = LifecycleState.SOFT_DELETED if self.trashed() else LifecycleState.PERSISTED

    def mark_removed(self) -> None:
        self._state = LifecycleState.REMOVED

    def hydrate(self, row: Mapping[str, Any]) -> None:
        """Replace attributes with a storage row and drop cached relations."""
        self._store.hydrate(self._options.naming.hydrate(row))
        self._relations.clear()
        self.mark_persisted()

    # -- Attributes ---------------------------------------------------------

    def get_attribute(self, key: str) -> Any:
        return self._store.get(key)

    def set_attribute(self, key: str, value: Any) -> Model:
        self._store.set(key, value)
        return self

    def get_attributes(self) -> dict[str, Any]:
        return self._store.raw()

    def fill(self, attributes: Mapping[str, Any]) -> Model:
        self._store.fill(attributes)
        return self

    def force_fill(self, attributes: Mapping[str, Any]) -> Model:
        self._store.force_fill(attributes)
        return self

    def get_dirty(self) -> dict[str, Any]:
        return self._store.get_dirty()

    def is_dirty(self, key: str | Iterable[str] | None = None) -> bool:
        return self._store.is_dirty(key)

    def is_clean(self, key: str | Iterable[str] | None = None) -> bool:
        return not self._store.is_dirty(key)

    def get_original(self, key: str | None = None, default: Any = None) -> Any:
        return self._store.get_original(key, default)

    def sync_original(self) -> Model:
        self._store.sync_original()
        return self

    def column_value(self, column: str) -> Any:
        """Raw value of a storage column, read through the naming strategy."""
        return self._store.get_raw(self._options.naming.attribute(column))

    def set_column_value(self, column: str, value: Any) -> None:
        self._store.set(self._options.naming.attribute(column), value)

    def validation_rules(self, operation: str) -> Mapping[str, Any]:
        """Rules for ``operation`` (``"create"`` or ``"update"``); none by default."""
        return {}

    def validation_data(self) -> dict[str, Any]:
        return {key: self._store.cast_value(key, value) for key, value in self._store.raw().items()}

    # -- Relations ----------------------------------------------------------

    def get_relation(self, name: str) -> Any:
        """Cached relation value, loading it lazily on first access."""
        if name in self._relations:
            return self._relations[name]
        definition = type(self).__definition__
        relation = definition.relation(name)
        if not self._options.lazy_load_permitted(name):
            raise LazyLoadingViolationError(definition.name, name)
        logger.debug("relation_lazy_loaded", model=definition.name, relation=name, key=self.key)
        value = relation.get_results(self)
        self._relations[name] = value
        return value

    def set_relation(self, name: str, value: Any) -> Model:
        self._relations[name] = value
        return self

    def forget_relation(self, name: str) -> Model:
        self._relations.pop(name, None)
        return self

    def get_loaded_relation(self, name: str, default: Any = None) -> Any:
        return self._relations.get(name, default)

    def relation_loaded(self, name: str) -> bool:
        return name in self._relations

    def get_relations(self) -> dict[str, Any]:
        return dict(self._relations)

    def relation(self, name: str) -> BoundRelation:
        """The declared relation ``name`` bound to this entity (attach, sync, create, ...)."""
        return BoundRelation(type(self).__definition__.relation(name), self)

    def load(self, *relations: Any, **constrained: Any) -> Model:
        """Eager load relations onto this already-fetched entity."""
        query = type(self).query(self._manager).with_(*relations, **constrained)
        query.eager_load([self])
        return self

    # -- Persistence --------------------------------------------------------

    def save(self) -> bool:
        return self._manager.persistence.save(self)

    def delete(self) -> bool:
        return self._manager.persistence.delete(self)

    def force_delete(self) -> bool:
        return self._manager.persistence.force_delete(self)

    def restore(self) -> bool:
        return self._manager.persistence.restore(self)

    def refresh(self) -> Model:
        return self._manager.persistence.refresh(self)

    def update(self, attributes: Mapping[str, Any]) -> bool:
        """Fill then save."""
        return self.fill(attributes).save()

    # -- Serialization ------------------------------------------------------

    def _shown(self, key: str) -> bool:
        definition = type(self).__definition__
        if definition.visible:
            return key in definition.visible
        return key not in definition.hidden

    def to_dict(self) -> dict[str, Any]:
        """Cast attribute values plus loaded relations, honouring hidden/visible."""
        data = {key: self._store.get(key) for key in self._store.keys() if self._shown(key)}
        for name, value in self._relations.items():
            if self._shown(name):
                data[name] = _serialize(value)
        return data

    def to_json(self) -> str:
        return dumps(self.to_dict())

    # -- Python protocol ----------------------------------------------------

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        store = self.__dict__.get("_store")
        if store is not None and (store.has(name) or name in type(self).__definition__.accessors):
            return store.get(name)
        raise AttributeError(f"{type(self).__name__} has no attribute or column [{name}]")

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_") or hasattr(getattr(type(self), name, None), "__set__"):
            object.__setattr__(self, name, value)
        else:
            self._store.set(name, value)

    def __getitem__(self, key: str) -> Any:
        return self._store.get(key)

    def __setitem__(self, key: str, value: Any) -> None:
        self._store.set(key, value)

    def __contains__(self, key: object) -> bool:
        return key in self._store

    def __repr__(self) -> str:
        return f"<{type(self).__name__} key={self.key!r} state={self._state.value}>"


def _serialize(value: Any) -> Any:
    if isinstance(value, Model):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_serialize(item) for item in value]
    return value
