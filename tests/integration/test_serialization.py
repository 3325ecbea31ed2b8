"""Tests for to_dict / to_json output."""

from __future__ import annotations

import json

from entityspine import Model

from _support.models import Post, PostStatus, Tag, User


class PublicUser(Model):
    table = "users"
    visible = ("id", "name")
    hidden = ("name",)


class TestToDict:
    def test_hidden_columns_and_casts(self, manager):
        user = User.create(
            manager, {"name": "Ada", "password": "s3cret", "is_admin": 1, "settings": {"theme": "dark"}}
        )
        data = user.to_dict()
        assert "password" not in data
        assert data["is_admin"] is True
        assert data["settings"] == {"theme": "dark"}
        assert data["id"] == user.id

    def test_visible_takes_precedence(self, manager):
        User.create(manager, {"name": "Ada", "email": "ada@example.com"})
        data = PublicUser.query(manager).first().to_dict()
        assert data == {"id": 1, "name": "Ada"}

    def test_nested_relations(self, manager):
        ada = User.create(manager, {"name": "Ada", "password": "x"})
        Post.create(manager, {"user_id": ada.id, "title": "hello"})
        post = Post.query(manager).with_("author", "comments").first()
        data = post.to_dict()
        assert data["author"]["name"] == "Ada"
        assert "password" not in data["author"]
        assert data["comments"] == []

    def test_pivot_is_included(self, manager):
        post = Post.create(manager, {"title": "tagged"})
        Tag.create(manager, {"name": "python"})
        post.relation("tags").attach({1: {"weight": 3}})
        data = post.tags[0].to_dict()
        assert data["name"] == "python"
        assert data["pivot"]["pivot_weight"] == 3


class TestToJson:
    def test_enum_and_json_values(self, manager):
        post = Post.create(
            manager, {"title": "t", "status": PostStatus.PUBLISHED, "meta": {"k": [1, 2]}, "published": True}
        )
        decoded = json.loads(post.to_json())
        assert decoded["status"] == "published"
        assert decoded["meta"] == {"k": [1, 2]}
        assert decoded["published"] is True

    def test_page_to_dict(self, manager):
        for name in ("a", "b", "c"):
            User.create(manager, {"name": name})
        page = User.query(manager).order_by("id").paginate(per_page=2, page=1)
        data = page.to_dict()
        assert [u["name"] for u in data["data"]] == ["a", "b"]
        assert data["from"] == 1
        assert data["to"] == 2
        assert data["last_page"] == 2
