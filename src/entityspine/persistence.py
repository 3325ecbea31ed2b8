"""
Persistence state machine: save, delete, force delete, restore, refresh.

Manifesto:
    Entities describe state; this engine decides which statement that state
    turns into. Every write goes through one of five entry points, fires the
    lifecycle hooks in a fixed order and resyncs the entity's snapshot
    exactly once per successful write.

Architecture:
    ::

        TRANSIENT ──save()──▶ PERSISTED ──delete()──▶ SOFT_DELETED
                                 ▲   │  ◀──restore()──     │
                                 │   │                     │
                                 │   └──delete() (no soft deletes)──┐
                                 │        force_delete() ───────────┤
                                 │                                  ▼
                              save()                             REMOVED

        save() on insert:  creating → saving → INSERT → saved → created
        save() on update:  updating → saving → UPDATE → saved → updated
        delete():          deleting → (UPDATE marker | DELETE) → deleted
        restore():         restoring → UPDATE marker = NULL → restored

    A cancelable hook returning ``HookResult.CANCEL`` makes the operation
    return ``False`` without writing.

Optimistic locking:
    The update predicate compares the lock column with the value last read
    from storage (the snapshot). A null snapshot value matches with
    ``IS NULL`` so the first locked update of a fresh row succeeds. The next
    value is the old value plus one for numeric columns. Timestamp columns
    get a microsecond "now" that is pushed past the old value when the two
    would render the same, so every successful update moves the column.
    Zero affected rows raises :class:`OptimisticLockError`.

Tags:
    persistence, lifecycle, optimistic-locking, soft-deletes, entityspine

Doc-Types:
    api-reference
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from entityspine.errors import ModelNotFoundError, OptimisticLockError
from entityspine.events import Hook, HookResult
from entityspine.keys import generate_key
from entityspine.logging import entity_context, get_logger
from entityspine.timestamps import advance_timestamp, storage_now

if TYPE_CHECKING:
    from entityspine.protocols import Connection, QueryBuilder
    from entityspine.definition import ModelOptions
    from entityspine.manager import ModelManager
    from entityspine.model import Model

logger = get_logger(__name__)

_ABSENT = object()


def _now(options: ModelOptions) -> str:
    return storage_now(options.dates.format, options.dates.timezone)


def _context(entity: Model):
    return entity_context(entity.__definition__.name, entity.key)


class PersistenceEngine:
    """Writes entities for one :class:`~entityspine.manager.ModelManager`."""

    def __init__(self, manager: ModelManager):
        self.manager = manager

    @property
    def database(self) -> Connection:
        return self.manager.database

    @property
    def events(self):
        return self.manager.events

    def _cancelled(self, hook: Hook, entity: Model) -> bool:
        return self.events.dispatch(hook, entity) is HookResult.CANCEL

    # -- save ---------------------------------------------------------------

    def save(self, entity: Model) -> bool:
        """Insert a transient entity or update a persisted one.

        Returns ``False`` when a hook cancels or an unlocked update matches
        no row; a clean persisted entity returns ``True`` without a write.
        """
        with _context(entity):
            return self._save(entity)

    def _save(self, entity: Model) -> bool:
        creating = not entity.exists
        if entity.options.timestamps and (creating or entity.is_dirty()):
            self._touch(entity, creating)
        self._validate(entity, "create" if creating else "update")
        if creating:
            return self._insert(entity)
        return self._update(entity)

    def _touch(self, entity: Model, creating: bool) -> None:
        options = entity.options
        now = _now(options)
        entity.set_column_value(options.updated_at_column, now)
        if creating and entity.column_value(options.created_at_column) is None:
            entity.set_column_value(options.created_at_column, now)

    def _validate(self, entity: Model, operation: str) -> None:
        if not entity.options.validation_enabled:
            return
        rules = entity.validation_rules(operation)
        if not rules:
            return
        self.manager.validator.validate(entity, entity.validation_data(), rules, operation)

    def _insert(self, entity: Model) -> bool:
        if self._cancelled(Hook.CREATING, entity) or self._cancelled(Hook.SAVING, entity):
            return False

        definition = entity.__definition__
        options = entity.options
        pk = definition.primary_key
        if not definition.incrementing and entity.column_value(pk) is None:
            entity.set_column_value(pk, generate_key(definition.key_type, definition.name))

        payload = options.naming.storage(entity.get_dirty())
        table = self.database.table(definition.table)
        if definition.incrementing and entity.column_value(pk) is None:
            new_id = table.insert_get_id(payload, pk)
            if new_id is None:
                new_id = self.database.last_insert_id()
            entity.store.set(options.naming.attribute(pk), new_id, mark_dirty=False)
        else:
            table.insert(payload)

        entity.mark_persisted()
        entity.sync_original()
        logger.debug("entity_inserted", model=definition.name, key=entity.key)

        self.events.dispatch(Hook.SAVED, entity)
        self.events.dispatch(Hook.CREATED, entity)
        return True

    def _update(self, entity: Model) -> bool:
        if not entity.get_dirty():
            return True
        if self._cancelled(Hook.UPDATING, entity) or self._cancelled(Hook.SAVING, entity):
            return False

        definition = entity.__definition__
        options = entity.options
        builder = self._keyed_builder(entity)
        if options.optimistic_locking:
            self._apply_lock(entity, builder)

        payload = options.naming.storage(entity.get_dirty())
        if not payload:
            return True
        affected = builder.update(payload)
        if affected == 0:
            if options.optimistic_locking:
                logger.warning(
                    "optimistic_lock_failed",
                    model=definition.name,
                    key=entity.key,
                    lock_column=options.lock_column,
                )
                raise OptimisticLockError(definition.name, entity.key, definition.table)
            return False

        entity.sync_original()
        entity.mark_persisted()
        logger.debug("entity_updated", model=definition.name, key=entity.key, columns=sorted(payload))

        self.events.dispatch(Hook.SAVED, entity)
        self.events.dispatch(Hook.UPDATED, entity)
        return True

    def _keyed_builder(self, entity: Model) -> QueryBuilder:
        """Builder for this entity's row: global scopes applied, trashed rows included."""
        definition = entity.__definition__
        query = type(entity).query(self.manager).with_trashed()
        builder = query.prepared_builder()
        pk_attr = entity.options.naming.attribute(definition.primary_key)
        key = entity.get_original(pk_attr, entity.key)
        return builder.where(query.qualify(definition.primary_key), key)

    def _apply_lock(self, entity: Model, builder: QueryBuilder) -> None:
        options = entity.options
        lock_attr = options.naming.attribute(options.lock_column)
        current = entity.get_original(lock_attr)
        column = f"{entity.__definition__.table}.{options.lock_column}"
        if current is None:
            builder.where_null(column)
        else:
            builder.where(column, current)
        entity.store.set_raw(lock_attr, self._next_lock_value(entity, current))

    @staticmethod
    def _next_lock_value(entity: Model, current: Any) -> Any:
        options = entity.options
        if options.lock_is_timestamp:
            return advance_timestamp(current, options.dates.format, options.dates.timezone)
        return 1 if current is None else int(current) + 1

    # -- delete / restore ---------------------------------------------------

    def delete(self, entity: Model) -> bool:
        """Soft delete when the type uses soft deletes, otherwise remove the row."""
        with _context(entity):
            return self._delete(entity)

    def _delete(self, entity: Model) -> bool:
        if not entity.exists:
            return False
        if self._cancelled(Hook.DELETING, entity):
            return False

        options = entity.options
        if options.soft_deletes:
            captured = self._capture(entity)
            entity.set_column_value(options.deleted_at_column, _now(options))
            if not self._save_or_revert(entity, captured):
                return False
            entity.mark_persisted()
            logger.debug("entity_soft_deleted", model=entity.__definition__.name, key=entity.key)
        elif not self._remove(entity):
            return False

        self.events.dispatch(Hook.DELETED, entity)
        return True

    def force_delete(self, entity: Model) -> bool:
        """Remove the row regardless of soft deletes; no lifecycle hooks."""
        if not entity.exists:
            return False
        with _context(entity):
            return self._remove(entity)

    def restore(self, entity: Model) -> bool:
        """Clear the delete marker of a soft-deleted entity and save it."""
        with _context(entity):
            return self._restore(entity)

    def _restore(self, entity: Model) -> bool:
        options = entity.options
        if not options.soft_deletes or not entity.exists:
            return False

        captured = self._capture(entity)
        entity.set_column_value(options.deleted_at_column, None)
        if self._cancelled(Hook.RESTORING, entity):
            self._rollback(entity, captured)
            return False
        if not self._save_or_revert(entity, captured):
            return False

        entity.mark_persisted()
        logger.debug("entity_restored", model=entity.__definition__.name, key=entity.key)
        self.events.dispatch(Hook.RESTORED, entity)
        return True

    @staticmethod
    def _capture(entity: Model) -> dict[str, Any]:
        """Raw values of the columns a marker save touches: marker, updated_at, lock."""
        options = entity.options
        columns = [options.deleted_at_column]
        if options.timestamps:
            columns.append(options.updated_at_column)
        if options.optimistic_locking:
            columns.append(options.lock_column)
        attributes = dict.fromkeys(options.naming.attribute(c) for c in columns)
        return {attr: entity.store.get_raw(attr, _ABSENT) for attr in attributes}

    @staticmethod
    def _rollback(entity: Model, captured: dict[str, Any]) -> None:
        for attribute, value in captured.items():
            if value is _ABSENT:
                entity.store.forget(attribute)
            else:
                entity.store.set_raw(attribute, value)

    def _save_or_revert(self, entity: Model, captured: dict[str, Any]) -> bool:
        """Save; put the captured columns back if the save fails or raises."""
        try:
            saved = self.save(entity)
        except Exception:
            self._rollback(entity, captured)
            raise
        if not saved:
            self._rollback(entity, captured)
        return saved

    def _remove(self, entity: Model) -> bool:
        affected = self._keyed_builder(entity).delete()
        if affected == 0:
            return False
        entity.mark_removed()
        logger.debug("entity_deleted", model=entity.__definition__.name, key=entity.key)
        return True

    # -- refresh ------------------------------------------------------------

    def refresh(self, entity: Model) -> Model:
        """Reload the entity's row (trashed included) and drop cached relations."""
        definition = entity.__definition__
        if not entity.exists:
            raise ModelNotFoundError(definition.name, definition.table, entity.key)
        row = self._keyed_builder(entity).first()
        if row is None:
            raise ModelNotFoundError(definition.name, definition.table, entity.key)
        entity.hydrate(row)
        return entity
