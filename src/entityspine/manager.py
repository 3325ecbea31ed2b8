"""
ModelManager: the execution context every entity and query runs in.

A manager bundles the collaborators the engine needs (database, settings,
validator, event dispatcher) together with per-manager state: resolved
model options and the current tenant. There is no module-level engine
state, so two managers (or two tests) never see each other's listeners,
tenants or options.

Examples:
    >>> manager = ModelManager.from_url("sqlite:///app.db")
    >>> user = User.create(manager, {"name": "Ada"})

    >>> with manager.tenant(42):
    ...     Invoice.query(manager).get()   # filtered by invoices.tenant_id = 42

    >>> manager.transaction(lambda m: (a.save(), b.save()))

Tags:
    manager, context, multi-tenancy, entityspine

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any, TypeVar

from entityspine.db import Database, create_engine
from entityspine.definition import ModelOptions, resolve_options
from entityspine.events import EventDispatcher, Hook, Listener
from entityspine.logging import get_logger
from entityspine.persistence import PersistenceEngine
from entityspine.protocols import ModelValidator
from entityspine.settings import OrmSettings, get_settings
from entityspine.validation import PydanticValidator

logger = get_logger(__name__)

T = TypeVar("T")


class ModelManager:
    """Database + settings + validator + events for a set of model types."""

    def __init__(
        self,
        database: Database,
        settings: OrmSettings | None = None,
        *,
        validator: ModelValidator | None = None,
        events: EventDispatcher | None = None,
    ):
        self.database = database
        self.settings = settings or get_settings()
        self.validator: ModelValidator = validator or PydanticValidator()
        self.events = events or EventDispatcher()
        self.persistence = PersistenceEngine(self)
        self.tenant_id: Any = None
        self._options: dict[type, ModelOptions] = {}
        self._booted: set[type] = set()

    @classmethod
    def from_url(cls, url: str = "sqlite:///:memory:", settings: OrmSettings | None = None, **kwargs: Any) -> ModelManager:
        return cls(Database(create_engine(url)), settings, **kwargs)

    def options(self, model: type) -> ModelOptions:
        """Resolved options for ``model``; the first call also registers its observers."""
        options = self._options.get(model)
        if options is None:
            self._boot(model)
            options = resolve_options(model, self.settings)
            self._options[model] = options
        return options

    def _boot(self, model: type) -> None:
        for klass in reversed(model.__mro__):
            if "__definition__" not in klass.__dict__ or klass in self._booted:
                continue
            self._booted.add(klass)
            for observer in klass.__dict__.get("observers", ()):
                self.events.observe(observer, klass)
            logger.debug("model_booted", model=klass.__name__)

    # -- Events -------------------------------------------------------------

    def listen(self, hook: Hook | str, listener: Listener, model: type | None = None) -> None:
        self.events.listen(hook, listener, model)

    def observe(self, observer: Any, model: type | None = None) -> list[Hook]:
        return self.events.observe(observer, model)

    # -- Transactions -------------------------------------------------------

    def transaction(self, callback: Callable[[ModelManager], T]) -> T:
        """Run ``callback(manager)`` in one database transaction."""
        return self.database.transaction(lambda _db: callback(self))

    # -- Tenancy ------------------------------------------------------------

    def set_tenant(self, tenant_id: Any) -> None:
        self.tenant_id = tenant_id

    @contextmanager
    def tenant(self, tenant_id: Any) -> Iterator[ModelManager]:
        """Scope tenant-aware queries to ``tenant_id`` for the ``with`` block."""
        previous = self.tenant_id
        self.tenant_id = tenant_id
        try:
            yield self
        finally:
            self.tenant_id = previous

    def close(self) -> None:
        self.database.close()

    def __repr__(self) -> str:
        return f"ModelManager(dialect={self.database.dialect_name!r}, tenant={self.tenant_id!r})"
