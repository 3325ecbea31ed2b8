"""
Attribute storage, casting and dirty tracking for one entity.

Manifesto:
    An entity's persisted state is two dictionaries: the current attributes
    and a snapshot of what storage last held. Everything the persistence
    layer needs (what changed, what to write, whether to write at all)
    falls out of comparing the two.

Architecture:
    ::

        fill(attrs) ──▶ FillGuard ──▶ set(key, value)
                                         │
                           mutator? ─────┤──── cast.set()
                                         ▼
                               ┌──────────────────┐   sync_original()   ┌──────────┐
                               │  _attributes     │ ──────────────────▶ │ _original│
                               └──────────────────┘                     └──────────┘
                                         │                                   │
                           get(key) ◀────┤ accessor? / cast.get()            │
                                         │                                   │
                               get_dirty() = keys whose value differs ───────┘
                                             or that are absent from the snapshot

Invariants:
    - A key is dirty iff it is absent from the snapshot or its value differs.
    - ``sync_original()`` is the only operation that clears dirtiness.
    - ``hydrate()`` writes storage values untouched and syncs the snapshot.

Tags:
    attributes, dirty-tracking, casts, mass-assignment, entityspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from entityspine.casts import Cast, DateContext
from entityspine.errors import MassAssignmentError

Accessor = Callable[[Any, Any], Any]
Mutator = Callable[[Any, Any], Any]


@dataclass(frozen=True)
class FillGuard:
    """Mass-assignment policy for one model type."""

    model: str
    table: str
    fillable: tuple[str, ...] = ()
    guarded: tuple[str, ...] = ()
    enforce: bool = True
    throw_on_violation: bool = True

    def is_fillable(self, key: str) -> bool:
        if "*" in self.guarded or key in self.guarded:
            return False
        if not self.fillable:
            return True
        return key in self.fillable

    def reject(self, key: str) -> None:
        raise MassAssignmentError(
            self.model,
            self.table,
            key,
            fillable=self.fillable,
            guarded=self.guarded,
        )


@dataclass
class AttributeStore:
    """Current attribute values plus the snapshot they are diffed against.

    ``owner`` is the entity passed to accessors and mutators as ``self``.
    """

    owner: Any = None
    casts: Mapping[str, Cast] = field(default_factory=dict)
    accessors: Mapping[str, Accessor] = field(default_factory=dict)
    mutators: Mapping[str, Mutator] = field(default_factory=dict)
    dates: DateContext = field(default_factory=DateContext)
    guard: FillGuard | None = None

    _attributes: dict[str, Any] = field(default_factory=dict, init=False, repr=False)
    _original: dict[str, Any] = field(default_factory=dict, init=False, repr=False)

    # -- Reading ------------------------------------------------------------

    def get(self, key: str) -> Any:
        """Read ``key`` through its accessor or cast; missing keys read as ``None``.

        An accessor also runs for keys that are not stored (computed values).
        """
        accessor = self.accessors.get(key)
        if accessor is not None:
            return accessor(self.owner, self._attributes.get(key))
        if key not in self._attributes:
            return None
        return self.cast_value(key, self._attributes[key])

    def get_raw(self, key: str, default: Any = None) -> Any:
        return self._attributes.get(key, default)

    def has(self, key: str) -> bool:
        return key in self._attributes

    def cast_value(self, key: str, value: Any) -> Any:
        cast = self.casts.get(key)
        if cast is None or value is None:
            return value
        return cast.get(value, self.dates)

    def raw(self) -> dict[str, Any]:
        """Storage-form attributes (a copy)."""
        return dict(self._attributes)

    def keys(self) -> Iterator[str]:
        return iter(list(self._attributes))

    # -- Writing ------------------------------------------------------------

    def set(self, key: str, value: Any, mark_dirty: bool = True) -> None:
        """Write ``key`` through its mutator or storage transform.

        With ``mark_dirty=False`` the snapshot receives the same value so the
        write is not reported as a change.
        """
        mutator = self.mutators.get(key)
        if mutator is not None:
            value = mutator(self.owner, value)
        else:
            value = self.for_storage(key, value)
        self._attributes[key] = value
        if not mark_dirty:
            self._original[key] = copy.deepcopy(value)

    def for_storage(self, key: str, value: Any) -> Any:
        cast = self.casts.get(key)
        if cast is None or value is None:
            return value
        return cast.set(value, self.dates)

    def set_raw(self, key: str, value: Any) -> None:
        self._attributes[key] = value

    def forget(self, key: str) -> None:
        self._attributes.pop(key, None)

    def fill(self, attributes: Mapping[str, Any], force: bool = False) -> None:
        """Assign many attributes, honouring the mass-assignment guard."""
        guard = self.guard
        for key, value in attributes.items():
            if guard is not None and guard.enforce and not force and not guard.is_fillable(key):
                if guard.throw_on_violation:
                    guard.reject(key)
                continue
            self.set(key, value)

    def force_fill(self, attributes: Mapping[str, Any]) -> None:
        self.fill(attributes, force=True)

    def hydrate(self, row: Mapping[str, Any]) -> None:
        """Replace all attributes with storage values and sync the snapshot."""
        self._attributes = dict(row)
        self.sync_original()

    # -- Dirty tracking -----------------------------------------------------

    def get_dirty(self) -> dict[str, Any]:
        return {
            key: value
            for key, value in self._attributes.items()
            if key not in self._original or self._original[key] != value
        }

    def is_dirty(self, key: str | Iterable[str] | None = None) -> bool:
        if key is None:
            return bool(self.get_dirty())
        if not isinstance(key, str):
            return any(self.is_dirty(k) for k in key)
        if key in self._attributes:
            return key not in self._original or self._original[key] != self._attributes[key]
        return self._original.get(key) is not None

    def get_original(self, key: str | None = None, default: Any = None) -> Any:
        if key is None:
            return dict(self._original)
        return self._original.get(key, default)

    def sync_original(self) -> None:
        self._original = copy.deepcopy(self._attributes)

    def __contains__(self, key: object) -> bool:
        return key in self._attributes

    def __len__(self) -> int:
        return len(self._attributes)
