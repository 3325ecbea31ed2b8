"""
Per-type model definitions.

Manifesto:
    Everything a model type declares (table, keys, casts, relations,
    accessors, mutators, scopes, observers) is read once, when the class is
    created, into a :class:`ModelDefinition`. Runtime code consults these
    tables instead of probing the class with reflection on every access.

    Engine-wide settings and per-type overrides are merged once per
    (manager, type) into a frozen :class:`ModelOptions`.

Architecture:
    ::

        class Post(Model): ...
              │ __init_subclass__
              ▼
        ModelDefinition  (static: table, primary key, casts, relations,
              │           accessors, mutators, local scopes, ScopeRegistry)
              │
              │  + OrmSettings (manager)  + class-level overrides
              ▼
        ModelOptions     (frozen: timestamps, soft deletes, fill guard,
                          lazy guard, dates, naming, optimistic locking)

Tags:
    model-definition, declarative, configuration, entityspine

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from entityspine.attributes import Accessor, FillGuard, Mutator
from entityspine.casts import Cast, DateContext, DateTimeCast, compile_casts
from entityspine.errors import InvalidRelationError, RelationNotFoundError
from entityspine.keys import KeyType
from entityspine.naming import Naming, table_name_for
from entityspine.scopes import LocalScope, ScopeRegistry, TenantScope
from entityspine.settings import OrmSettings

if TYPE_CHECKING:
    from entityspine.relations.base import Relation

_ACCESSOR_MARK = "__entityspine_accessor__"
_MUTATOR_MARK = "__entityspine_mutator__"


def accessor(key: str) -> Callable[[Callable[[Any, Any], Any]], Callable[[Any, Any], Any]]:
    """Mark a method ``(self, stored_value) -> value`` as the read override for ``key``."""

    def decorate(func: Callable[[Any, Any], Any]) -> Callable[[Any, Any], Any]:
        setattr(func, _ACCESSOR_MARK, key)
        return func

    return decorate


def mutator(key: str) -> Callable[[Callable[[Any, Any], Any]], Callable[[Any, Any], Any]]:
    """Mark a method ``(self, value) -> stored_value`` as the write override for ``key``."""

    def decorate(func: Callable[[Any, Any], Any]) -> Callable[[Any, Any], Any]:
        setattr(func, _MUTATOR_MARK, key)
        return func

    return decorate


# ── Model registry (string references in relations) ─────────────────────

_model_registry: dict[str, type] = {}


def register_model(model: type) -> None:
    _model_registry[model.__name__] = model
    _model_registry[f"{model.__module__}.{model.__qualname__}"] = model


def resolve_model(reference: Any) -> type:
    """Resolve a class, a registered class name or a zero-arg callable to a model class."""
    if isinstance(reference, type):
        return reference
    if isinstance(reference, str):
        try:
            return _model_registry[reference]
        except KeyError:
            raise LookupError(f"Model [{reference}] is not registered") from None
    if callable(reference):
        return resolve_model(reference())
    raise TypeError(f"Cannot resolve model reference {reference!r}")


# ── Static definition ───────────────────────────────────────────────────


@dataclass
class ModelDefinition:
    model: type
    name: str
    table: str
    primary_key: str
    key_type: str
    incrementing: bool
    fillable: tuple[str, ...]
    guarded: tuple[str, ...]
    hidden: tuple[str, ...]
    visible: tuple[str, ...]
    casts: dict[str, Cast]
    relations: dict[str, Relation] = field(default_factory=dict)
    accessors: dict[str, Accessor] = field(default_factory=dict)
    mutators: dict[str, Mutator] = field(default_factory=dict)
    local_scopes: dict[str, LocalScope] = field(default_factory=dict)
    scopes: ScopeRegistry = field(default_factory=ScopeRegistry)
    observers: tuple[Any, ...] = ()

    def relation(self, name: str) -> Relation:
        """Look up a declared relation by name.

        Raises RelationNotFoundError for unknown names and InvalidRelationError
        when the name is some other member of the class.
        """
        found = self.relations.get(name)
        if found is not None:
            return found
        member = getattr(self.model, name, None)
        if member is not None:
            raise InvalidRelationError(self.name, name, type(member).__name__)
        raise RelationNotFoundError(self.name, self.table, name, self.relations)


def build_definition(model: type) -> ModelDefinition:
    """Read a model class (and its bases) into a :class:`ModelDefinition`."""
    from entityspine.relations.base import Relation

    key_type = str(getattr(model, "key_type", KeyType.INT.value)).lower()
    incrementing = getattr(model, "incrementing", None)
    if incrementing is None:
        incrementing = key_type == KeyType.INT.value

    parent_def = next(
        (b.__dict__["__definition__"] for b in model.__mro__[1:] if "__definition__" in b.__dict__),
        None,
    )

    definition = ModelDefinition(
        model=model,
        name=model.__name__,
        table=getattr(model, "table", None) or table_name_for(model.__name__),
        primary_key=model.primary_key,
        key_type=key_type,
        incrementing=bool(incrementing),
        fillable=tuple(model.fillable),
        guarded=tuple(model.guarded),
        hidden=tuple(model.hidden),
        visible=tuple(model.visible),
        casts=compile_casts(model.casts),
        scopes=ScopeRegistry(parent_def.scopes if parent_def else None),
        observers=tuple(model.observers),
    )

    # most-derived declaration wins
    for klass in reversed(model.__mro__):
        for attr_name, value in vars(klass).items():
            if isinstance(value, Relation):
                definition.relations[attr_name] = value.bind(model, attr_name)
            elif isinstance(value, LocalScope):
                definition.local_scopes[attr_name] = value
            elif callable(value):
                if hasattr(value, _ACCESSOR_MARK):
                    definition.accessors[getattr(value, _ACCESSOR_MARK)] = value
                if hasattr(value, _MUTATOR_MARK):
                    definition.mutators[getattr(value, _MUTATOR_MARK)] = value

    for scope_name, scope in dict(getattr(model, "global_scopes", {})).items():
        definition.scopes.add(scope_name, scope)
    tenant_column = getattr(model, "tenant_column", None)
    if tenant_column:
        definition.scopes.add(TenantScope.name, TenantScope(tenant_column))

    return definition


# ── Resolved options ────────────────────────────────────────────────────


@dataclass(frozen=True)
class ModelOptions:
    """Settings merged with a type's overrides; resolved once per manager."""

    timestamps: bool
    created_at_column: str
    updated_at_column: str
    soft_deletes: bool
    deleted_at_column: str
    guard: FillGuard
    prevent_lazy_loading: bool
    allow_lazy_loading_in_testing: bool
    lazy_allowed: frozenset[str]
    testing: bool
    dates: DateContext
    naming: Naming
    optimistic_locking: bool
    lock_column: str
    lock_is_timestamp: bool
    validation_enabled: bool

    def lazy_load_permitted(self, relation: str) -> bool:
        if not self.prevent_lazy_loading:
            return True
        if self.testing and self.allow_lazy_loading_in_testing:
            return True
        return relation in self.lazy_allowed


def _pick(override: Any, default: Any) -> Any:
    return default if override is None else override


def resolve_options(model: type, settings: OrmSettings) -> ModelOptions:
    definition: ModelDefinition = model.__definition__
    created_at = _pick(model.created_at_column, settings.timestamps.created_at_column)
    updated_at = _pick(model.updated_at_column, settings.timestamps.updated_at_column)
    lock_column = model.lock_column or updated_at
    naming = Naming(_pick(model.naming, settings.naming.hydrate))
    lock_cast = definition.casts.get(naming.attribute(lock_column))

    return ModelOptions(
        timestamps=_pick(model.timestamps, settings.timestamps.enabled),
        created_at_column=created_at,
        updated_at_column=updated_at,
        soft_deletes=_pick(model.soft_deletes, settings.soft_deletes.enabled),
        deleted_at_column=_pick(model.deleted_at_column, settings.soft_deletes.deleted_at_column),
        guard=FillGuard(
            model=definition.name,
            table=definition.table,
            fillable=definition.fillable,
            guarded=definition.guarded,
            enforce=_pick(model.enforce_fillable, settings.enforce_fillable),
            throw_on_violation=_pick(
                model.throw_on_mass_assignment, settings.mass_assignment.throw_on_violation
            ),
        ),
        prevent_lazy_loading=_pick(model.prevent_lazy_loading, settings.lazy_loading.prevent),
        allow_lazy_loading_in_testing=_pick(
            model.allow_lazy_loading_in_testing, settings.lazy_loading.allow_testing
        ),
        lazy_allowed=frozenset(model.lazy_allowed) | frozenset(settings.lazy_loading.allowed_relations),
        testing=settings.is_testing,
        dates=DateContext(
            format=_pick(model.date_format, settings.dates.format),
            timezone=_pick(model.timezone, settings.dates.timezone),
        ),
        naming=naming,
        optimistic_locking=bool(model.optimistic_locking),
        lock_column=lock_column,
        lock_is_timestamp=lock_column in (updated_at, created_at) or isinstance(lock_cast, DateTimeCast),
        validation_enabled=settings.validation.enabled,
    )
