"""Tests for ``entityspine.db``: the SQLAlchemy Core query builder and Database."""

from __future__ import annotations

import pytest

from entityspine.errors import QueryError
from entityspine.protocols import Connection, ModelValidator, QueryBuilder
from entityspine.validation import NullValidator, PydanticValidator


@pytest.fixture
def widgets(database):
    table = database.table("widgets")
    table.insert_many([{"name": f"w{i}", "secret": None} for i in range(1, 6)])
    return database


class TestReads:
    def test_where_operators(self, widgets):
        rows = widgets.table("widgets").where("id", ">", 3).order_by("id").get()
        assert [r["name"] for r in rows] == ["w4", "w5"]

    def test_two_argument_where(self, widgets):
        assert widgets.table("widgets").where("name", "w2").first()["id"] == 2

    def test_where_none_is_null(self, widgets):
        assert widgets.table("widgets").where("secret", None).count() == 5

    def test_where_without_value_raises(self, widgets):
        with pytest.raises(QueryError):
            widgets.table("widgets").where("name")

    def test_unsupported_operator(self, widgets):
        with pytest.raises(QueryError, match="Unsupported operator"):
            widgets.table("widgets").where("id", "~", 1)

    def test_where_in_and_pluck(self, widgets):
        names = widgets.table("widgets").where_in("id", [1, 3]).order_by("id").pluck("name")
        assert names == ["w1", "w3"]

    def test_for_page(self, widgets):
        rows = widgets.table("widgets").order_by("id").for_page(2, 2).get()
        assert [r["id"] for r in rows] == [3, 4]

    def test_exists(self, widgets):
        assert widgets.table("widgets").where("name", "w1").exists()
        assert not widgets.table("widgets").where("name", "zz").exists()

    def test_clone_is_independent(self, widgets):
        base = widgets.table("widgets").where("id", ">", 1)
        narrowed = base.clone().where("id", "<", 3)
        assert narrowed.count() == 1
        assert base.count() == 4

    def test_join_with_aliases(self, database):
        database.table("posts").insert({"id": 1, "title": "Hello"})
        database.table("tags").insert({"id": 9, "name": "news"})
        database.table("post_tag").insert({"post_id": 1, "tag_id": 9, "weight": 3})
        rows = (
            database.table("tags")
            .select("tags.*")
            .add_select("post_tag.weight", "pivot_weight")
            .join("post_tag", "post_tag.tag_id", "=", "tags.id")
            .where("post_tag.post_id", 1)
            .get()
        )
        assert rows == [
            {"id": 9, "name": "news", "created_at": None, "updated_at": None, "pivot_weight": 3}
        ]

    def test_lock_renders_for_update(self, engine):
        from sqlalchemy.dialects import postgresql

        from entityspine.db import Database

        builder = Database(engine).table("widgets").where("id", 1).lock("update")
        sql = str(builder.to_select().compile(dialect=postgresql.dialect()))
        assert "FOR UPDATE" in sql
        shared = Database(engine).table("widgets").lock("share").to_select()
        assert "FOR SHARE" in str(shared.compile(dialect=postgresql.dialect()))

    def test_unknown_lock_mode(self, database):
        with pytest.raises(QueryError):
            database.table("widgets").lock("exclusive-ish")


class TestWrites:
    def test_insert_get_id(self, database):
        first = database.table("widgets").insert_get_id({"name": "a"})
        second = database.table("widgets").insert_get_id({"name": "b"})
        assert second == first + 1
        assert database.last_insert_id() == second

    def test_insert_many_with_mixed_keys(self, database):
        count = database.table("widgets").insert_many([{"name": "a"}, {"name": "b", "secret": "s"}])
        assert count == 2
        assert database.table("widgets").where_not_null("secret").pluck("name") == ["b"]

    def test_update_and_delete(self, widgets):
        assert widgets.table("widgets").where("id", "<=", 2).update({"secret": "x"}) == 2
        assert widgets.table("widgets").where("secret", "x").delete() == 2
        assert widgets.table("widgets").count() == 3

    def test_update_on_join_is_rejected(self, database):
        builder = database.table("tags").join("post_tag", "post_tag.tag_id", "=", "tags.id")
        with pytest.raises(QueryError):
            builder.update({"name": "x"})

    def test_upsert(self, database):
        table = database.table("tags")
        table.upsert([{"name": "news"}, {"name": "tech"}], unique_by="name")
        first_ids = {r["name"]: r["id"] for r in database.table("tags").get()}
        database.table("tags").upsert(
            [{"name": "news", "updated_at": "2024-01-01T00:00:00+00:00"}], unique_by="name"
        )
        row = database.table("tags").where("name", "news").first()
        assert row["id"] == first_ids["news"]
        assert row["updated_at"] == "2024-01-01T00:00:00+00:00"
        assert database.table("tags").count() == 2


class TestTransactions:
    def test_commit(self, database):
        database.transaction(lambda db: db.table("widgets").insert({"name": "a"}))
        assert database.table("widgets").count() == 1

    def test_rollback_and_reraise(self, database):
        def fail(db):
            db.table("widgets").insert({"name": "a"})
            raise RuntimeError("abort")

        with pytest.raises(RuntimeError, match="abort"):
            database.transaction(fail)
        assert database.table("widgets").count() == 0

    def test_nested_joins_outer(self, database):
        def outer(db):
            db.transaction(lambda inner: inner.table("widgets").insert({"name": "inner"}))
            assert db.in_transaction
            raise RuntimeError("abort outer")

        with pytest.raises(RuntimeError):
            database.transaction(outer)
        assert database.table("widgets").count() == 0
        assert not database.in_transaction

    def test_statement_returns_rowcount(self, widgets):
        assert widgets.statement("UPDATE widgets SET secret = :s WHERE id > :i", s="z", i=3) == 2


class TestProtocols:
    def test_database_satisfies_connection(self, database):
        assert isinstance(database, Connection)
        assert isinstance(database.table("widgets"), QueryBuilder)

    def test_validators_satisfy_model_validator(self):
        assert isinstance(NullValidator(), ModelValidator)
        assert isinstance(PydanticValidator(), ModelValidator)
