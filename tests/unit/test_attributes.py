"""Tests for ``entityspine.attributes``: attribute store, dirty tracking, fill guard."""

from __future__ import annotations

import pytest

from entityspine.attributes import AttributeStore, FillGuard
from entityspine.casts import compile_casts
from entityspine.errors import MassAssignmentError


def make_store(**kwargs) -> AttributeStore:
    return AttributeStore(**kwargs)


class TestDirtyTracking:
    def test_sync_clears_dirty(self):
        store = make_store()
        store.set("name", "A")
        assert store.is_dirty()
        store.sync_original()
        assert not store.is_dirty()

    def test_change_after_sync_is_dirty(self):
        store = make_store()
        store.hydrate({"name": "A"})
        store.set("name", "B")
        assert store.is_dirty("name")
        assert store.get_dirty() == {"name": "B"}
        store.sync_original()
        assert not store.is_dirty()

    def test_setting_same_value_is_clean(self):
        store = make_store()
        store.hydrate({"name": "A"})
        store.set("name", "A")
        assert not store.is_dirty()

    def test_key_absent_from_snapshot_is_dirty(self):
        store = make_store()
        store.hydrate({"name": "A"})
        store.set("email", None)
        assert store.is_dirty("email")

    def test_is_dirty_with_several_keys(self):
        store = make_store()
        store.hydrate({"a": 1, "b": 2})
        store.set("b", 3)
        assert store.is_dirty(["a", "b"])
        assert not store.is_dirty(["a"])

    def test_mark_dirty_false_writes_snapshot(self):
        store = make_store()
        store.hydrate({"name": "A"})
        store.set("id", 7, mark_dirty=False)
        assert not store.is_dirty()
        assert store.get_original("id") == 7

    def test_snapshot_is_a_copy(self):
        store = make_store()
        store.hydrate({"tags": ["a"]})
        store.get_raw("tags").append("b")
        assert store.is_dirty("tags")


class TestCastsAndOverrides:
    def test_cast_applied_on_read_and_write(self):
        store = make_store(casts=compile_casts({"active": "bool", "meta": "json"}))
        store.set("active", "yes")
        store.set("meta", {"k": 1})
        assert store.get_raw("active") is True
        assert store.get_raw("meta") == '{"k": 1}'
        assert store.get("meta") == {"k": 1}

    def test_missing_key_reads_none(self):
        assert make_store().get("nope") is None

    def test_accessor_and_mutator(self):
        owner = object()
        seen = []

        def accessor(entity, value):
            seen.append(entity)
            return f"<{value}>"

        store = make_store(
            owner=owner,
            accessors={"name": accessor},
            mutators={"name": lambda entity, value: value.strip()},
        )
        store.set("name", "  Ada ")
        assert store.get_raw("name") == "Ada"
        assert store.get("name") == "<Ada>"
        assert seen == [owner]

    def test_hydrate_skips_mutators(self):
        store = make_store(mutators={"name": lambda entity, value: value.upper()})
        store.hydrate({"name": "ada"})
        assert store.get_raw("name") == "ada"


class TestFillGuard:
    def test_fillable_allow_list_throws(self):
        guard = FillGuard(model="User", table="users", fillable=("name",))
        store = make_store(guard=guard)
        with pytest.raises(MassAssignmentError) as exc_info:
            store.fill({"name": "A", "role": "x"})
        assert exc_info.value.context.attribute == "role"
        assert "role" in str(exc_info.value)

    def test_fillable_allow_list_skips(self):
        guard = FillGuard(model="User", table="users", fillable=("name",), throw_on_violation=False)
        store = make_store(guard=guard)
        store.fill({"name": "A", "role": "x"})
        assert store.get("name") == "A"
        assert not store.has("role")

    def test_guarded_star_rejects_everything(self):
        guard = FillGuard(model="User", table="users", guarded=("*",), throw_on_violation=False)
        store = make_store(guard=guard)
        store.fill({"name": "A"})
        assert len(store) == 0

    def test_force_fill_bypasses_guard(self):
        guard = FillGuard(model="User", table="users", guarded=("*",))
        store = make_store(guard=guard)
        store.force_fill({"role": "admin"})
        assert store.get("role") == "admin"

    def test_enforcement_off_allows_all(self):
        guard = FillGuard(model="User", table="users", fillable=("name",), enforce=False)
        store = make_store(guard=guard)
        store.fill({"role": "x"})
        assert store.get("role") == "x"
