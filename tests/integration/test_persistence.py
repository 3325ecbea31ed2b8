"""Tests for ``entityspine.persistence``: save/update/delete lifecycle."""

from __future__ import annotations

import re

import pytest

from entityspine import Hook, HookResult, LifecycleState, Model
from entityspine.errors import InvalidKeyError, MassAssignmentError, ModelNotFoundError, ValidationError

from _support.models import (
    Account,
    ApiToken,
    AuditEntry,
    CountingObserver,
    Note,
    Post,
    PostStatus,
    User,
    Widget,
)


class Member(Model):
    table = "users"
    fillable = ("name", "email")

    def validation_rules(self, operation):
        if operation == "create":
            return {"email": str}
        return {}


class Gadget(Model):
    table = "widgets"
    key_type = "snowflake"
    timestamps = False
    fillable = ("name",)


class TestInsert:
    def test_create_assigns_key_and_timestamps(self, manager):
        user = User.create(manager, {"name": "Ada", "email": "ADA@Example.com"})
        assert user.exists
        assert user.state is LifecycleState.PERSISTED
        assert user.id == 1
        assert user.email == "ada@example.com"
        assert user.created_at is not None
        assert user.created_at == user.updated_at
        assert not user.is_dirty()

    def test_round_trip(self, manager):
        user = User.create(
            manager,
            {"name": "Ada", "email": "a@x.io", "is_admin": True, "settings": {"theme": "dark"}},
        )
        loaded = User.find(manager, user.id)
        for key in ("name", "email", "is_admin", "settings"):
            assert loaded.get_attribute(key) == user.get_attribute(key)
        assert loaded.is_admin is True
        assert loaded.settings == {"theme": "dark"}

    def test_enum_cast_persists_value(self, manager, database):
        post = Post.create(manager, {"title": "t", "status": PostStatus.PUBLISHED})
        assert database.table("posts").first()["status"] == "published"
        assert Post.find(manager, post.id).status is PostStatus.PUBLISHED

    def test_uuid_key_generated(self, manager):
        token = ApiToken.create(manager, {"label": "ci"})
        assert isinstance(token.id, str) and len(token.id) == 36
        assert ApiToken.find(manager, token.id).label == "ci"

    def test_ulid_key_generated(self, manager):
        entry = AuditEntry.create(manager, {"action": "login"})
        assert len(entry.id) == 26

    def test_preset_surrogate_key_is_kept(self, manager):
        token = ApiToken(manager, {"label": "x"}).force_fill({"id": "fixed-key"})
        token.save()
        assert ApiToken.find(manager, "fixed-key") is not None

    def test_unsupported_key_type(self, manager):
        with pytest.raises(InvalidKeyError):
            Gadget(manager, {"name": "g"}).save()

    def test_timestamps_disabled(self, manager, database):
        widget = Widget.create(manager, {"name": "w"})
        assert "created_at" not in widget
        assert database.table("widgets").count() == 1

    def test_custom_date_format(self, make_manager):
        manager = make_manager(dates={"format": "%Y-%m-%d %H:%M:%S"})
        user = User.create(manager, {"name": "Ada"})
        assert re.fullmatch(r"\d{4}-\d\d-\d\d \d\d:\d\d:\d\d", user.created_at)


class TestUpdate:
    def test_dirty_attributes_are_written(self, manager):
        user = User.create(manager, {"name": "Ada"})
        user.name = "Grace"
        assert user.is_dirty("name")
        assert user.save() is True
        assert not user.is_dirty()
        assert User.find(manager, user.id).name == "Grace"

    def test_clean_save_writes_nothing(self, manager, query_log):
        user = User.create(manager, {"name": "Ada"})
        query_log.clear()
        assert user.save() is True
        assert query_log == []

    def test_update_helper(self, manager):
        user = User.create(manager, {"name": "Ada"})
        assert user.update({"name": "Lin"})
        assert User.find(manager, user.id).name == "Lin"

    def test_missing_row_returns_false(self, manager, database):
        user = User.create(manager, {"name": "Ada"})
        database.table("users").delete()
        user.name = "Gone"
        assert user.save() is False

    def test_refresh_reloads(self, manager, database):
        user = User.create(manager, {"name": "Ada"})
        database.table("users").where("id", user.id).update({"name": "Changed"})
        user.name = "Local"
        user.refresh()
        assert user.name == "Changed"
        assert not user.is_dirty()

    def test_refresh_missing_row(self, manager, database):
        user = User.create(manager, {"name": "Ada"})
        database.table("users").delete()
        with pytest.raises(ModelNotFoundError):
            user.refresh()


class TestHooks:
    def test_hook_order(self, manager):
        calls = []
        for hook in Hook:
            manager.listen(hook, lambda entity, h=hook: calls.append(h.value), model=User)

        user = User.create(manager, {"name": "A"})
        assert calls == ["creating", "saving", "saved", "created"]

        calls.clear()
        user.name = "B"
        user.save()
        assert calls == ["updating", "saving", "saved", "updated"]

    def test_cancel_creating(self, manager, database):
        manager.listen(Hook.CREATING, lambda entity: HookResult.CANCEL, model=User)
        user = User(manager, {"name": "A"})
        assert user.save() is False
        assert not user.exists
        assert database.table("users").count() == 0

    def test_cancel_updating_keeps_row(self, manager):
        user = User.create(manager, {"name": "A"})
        manager.listen(Hook.UPDATING, lambda entity: HookResult.CANCEL, model=User)
        user.name = "B"
        assert user.save() is False
        assert user.is_dirty("name")
        assert User.find(manager, user.id).name == "A"

    def test_hook_mutations_are_persisted(self, manager):
        def stamp(entity):
            entity.name = "from-hook"

        manager.listen(Hook.SAVING, stamp, model=User)
        user = User.create(manager, {"name": "A"})
        assert User.find(manager, user.id).name == "from-hook"

    def test_listeners_for_other_models_do_not_fire(self, manager):
        manager.listen(Hook.CREATING, lambda entity: HookResult.CANCEL, model=Post)
        assert User.create(manager, {"name": "A"}).exists

    def test_declared_observers_boot_once_per_manager(self, manager):
        Note.create(manager, {"body": "a"})
        Note.create(manager, {"body": "b"})
        assert CountingObserver.calls == ["creating", "created", "creating", "created"]


class TestPhysicalDelete:
    def test_delete_removes_row(self, manager, database):
        user = User.create(manager, {"name": "A"})
        deleted = []
        manager.listen(Hook.DELETED, deleted.append, model=User)
        assert user.delete() is True
        assert user.state is LifecycleState.REMOVED
        assert not user.exists
        assert database.table("users").count() == 0
        assert deleted == [user]

    def test_cancel_deleting(self, manager, database):
        user = User.create(manager, {"name": "A"})
        manager.listen(Hook.DELETING, lambda entity: HookResult.CANCEL, model=User)
        assert user.delete() is False
        assert database.table("users").count() == 1

    def test_transient_delete_is_a_no_op(self, manager):
        assert User(manager, {"name": "A"}).delete() is False


class TestValidation:
    def test_failing_rules_raise(self, manager, database):
        with pytest.raises(ValidationError) as exc_info:
            Member(manager, {"name": "A"}).save()
        assert "email" in exc_info.value.errors
        assert exc_info.value.context.table == "users"
        assert database.table("users").count() == 0

    def test_operation_specific_rules(self, manager):
        member = Member.create(manager, {"name": "A", "email": "a@x.io"})
        member.email = None
        assert member.save() is True

    def test_validation_disabled(self, make_manager):
        manager = make_manager(validation={"enabled": False})
        assert Member(manager, {"name": "A"}).save() is True


class TestMassAssignment:
    def test_throw(self, manager):
        with pytest.raises(MassAssignmentError, match=r"\[role\]"):
            Post(manager, {"title": "A", "role": "x"})

    def test_skip(self, make_manager):
        manager = make_manager(mass_assignment={"throw_on_violation": False})
        post = Post(manager, {"title": "A", "role": "x"})
        assert post.title == "A"
        assert "role" not in post

    def test_guarded_attribute(self, manager):
        with pytest.raises(MassAssignmentError):
            Widget(manager, {"name": "n", "secret": "s"})

    def test_direct_assignment_is_not_guarded(self, manager):
        widget = Widget(manager, {"name": "n"})
        widget.secret = "s"
        assert widget.secret == "s"

    def test_enforcement_disabled(self, make_manager):
        manager = make_manager(enforce_fillable=False)
        assert Widget(manager, {"secret": "s"}).secret == "s"


class TestCamelNaming:
    def test_storage_is_snake_case(self, manager, database):
        account = Account.create(manager, {"firstName": "Ada", "lastName": "Lovelace"})
        row = database.table("accounts").first()
        assert row["first_name"] == "Ada"
        assert row["created_at"] is not None

        loaded = Account.find(manager, account.id)
        assert loaded.firstName == "Ada"
        assert loaded.createdAt is not None

    def test_update_maps_columns(self, manager, database):
        account = Account.create(manager, {"firstName": "Ada"})
        account.lastName = "Byron"
        assert account.save()
        assert database.table("accounts").first()["last_name"] == "Byron"


class TestTransactions:
    def test_rollback_discards_saves(self, manager):
        def work(m):
            User.create(m, {"name": "A"})
            User.create(m, {"name": "B"})
            raise RuntimeError("abort")

        with pytest.raises(RuntimeError):
            manager.transaction(work)
        assert User.query(manager).count() == 0

    def test_commit_returns_callback_value(self, manager):
        user = manager.transaction(lambda m: User.create(m, {"name": "A"}))
        assert User.find(manager, user.id) is not None
