"""
Lifecycle hooks and observers.

Manifesto:
    Application code reacts to entity lifecycle changes (audit trails,
    derived fields, veto rules) without the persistence engine knowing about
    it. Listeners are plain callables; cancellation is an explicit return
    value, not an exception.

Architecture:
    ::

        PersistenceEngine ── dispatch(Hook.CREATING, entity) ──▶ EventDispatcher
                                                                     │
                                   listeners for any model (None) or for
                                   type(entity) or a base, in registration order
                                                                     │
                      HookResult.CANCEL from a cancelable hook ◀─────┘ stops dispatch

    Cancelable hooks: creating, updating, saving, deleting, restoring.
    The past-tense hooks fire after the fact and their results are ignored.

Examples:
    >>> dispatcher = EventDispatcher()
    >>> dispatcher.listen(Hook.SAVING, lambda user: HookResult.CANCEL, model=User)

    Observers implement only the hooks they care about:

    >>> class AuditObserver(Observer):
    ...     def created(self, entity):
    ...         audit_log.append(entity.id)
    >>> dispatcher.observe(AuditObserver(), model=User)

Tags:
    events, hooks, observers, lifecycle, entityspine

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from entityspine.logging import get_logger

logger = get_logger(__name__)

__all__ = ["Hook", "HookResult", "Listener", "Observer", "EventDispatcher"]


class Hook(str, Enum):
    CREATING = "creating"
    CREATED = "created"
    UPDATING = "updating"
    UPDATED = "updated"
    SAVING = "saving"
    SAVED = "saved"
    DELETING = "deleting"
    DELETED = "deleted"
    RESTORING = "restoring"
    RESTORED = "restored"

    @property
    def cancelable(self) -> bool:
        return self in _CANCELABLE


_CANCELABLE = frozenset(
    {Hook.CREATING, Hook.UPDATING, Hook.SAVING, Hook.DELETING, Hook.RESTORING}
)


class HookResult(str, Enum):
    PROCEED = "proceed"
    CANCEL = "cancel"


Listener = Callable[[Any], Any]


class Observer:
    """Base class for observers: every hook is a no-op until overridden."""

    def creating(self, entity: Any) -> Any: ...
    def created(self, entity: Any) -> Any: ...
    def updating(self, entity: Any) -> Any: ...
    def updated(self, entity: Any) -> Any: ...
    def saving(self, entity: Any) -> Any: ...
    def saved(self, entity: Any) -> Any: ...
    def deleting(self, entity: Any) -> Any: ...
    def deleted(self, entity: Any) -> Any: ...
    def restoring(self, entity: Any) -> Any: ...
    def restored(self, entity: Any) -> Any: ...


@dataclass(frozen=True)
class _Registration:
    hook: Hook
    listener: Listener
    model: type | None


class EventDispatcher:
    """Ordered registry of hook listeners, optionally scoped to a model type."""

    def __init__(self) -> None:
        self._registrations: list[_Registration] = []

    def listen(self, hook: Hook | str, listener: Listener, model: type | None = None) -> None:
        self._registrations.append(_Registration(Hook(hook), listener, model))

    def observe(self, observer: Any, model: type | None = None) -> list[Hook]:
        """Register each hook method ``observer`` implements; returns the hooks bound.

        For :class:`Observer` subclasses only overridden methods count, so
        untouched no-op defaults never become listeners.
        """
        if isinstance(observer, type):
            observer = observer()
        bound: list[Hook] = []
        for hook in Hook:
            method = getattr(observer, hook.value, None)
            if not callable(method):
                continue
            if isinstance(observer, Observer) and (
                getattr(type(observer), hook.value) is getattr(Observer, hook.value)
            ):
                continue
            self.listen(hook, method, model)
            bound.append(hook)
        return bound

    def dispatch(self, hook: Hook | str, entity: Any) -> HookResult:
        """Run listeners for ``hook`` in registration order.

        Global and type-scoped listeners interleave as they were registered.
        For a cancelable hook the first ``HookResult.CANCEL`` stops dispatch.
        """
        hook = Hook(hook)
        for registration in self._matching(hook, entity):
            result = registration.listener(entity)
            if hook.cancelable and result is HookResult.CANCEL:
                logger.info(
                    "lifecycle_cancelled",
                    hook=hook.value,
                    model=type(entity).__name__,
                )
                return HookResult.CANCEL
        return HookResult.PROCEED

    def forget(self, model: type | None = None) -> None:
        """Drop listeners for ``model`` (all listeners when ``None``)."""
        if model is None:
            self._registrations.clear()
        else:
            self._registrations = [r for r in self._registrations if r.model is not model]

    def has_listeners(self, hook: Hook | str, model: type | None = None) -> bool:
        hook = Hook(hook)
        return any(
            r.hook is hook and (model is None or r.model is None or issubclass(model, r.model))
            for r in self._registrations
        )

    def _matching(self, hook: Hook, entity: Any) -> list[_Registration]:
        return [
            r
            for r in self._registrations
            if r.hook is hook and (r.model is None or isinstance(entity, r.model))
        ]
