"""Tests for optimistic locking on a numeric version column and on updated_at."""

from __future__ import annotations

import pytest

from entityspine import Model
from entityspine.errors import OptimisticLockError

from _support.models import Document


class StampedNote(Model):
    """Locks on the default column, updated_at."""

    table = "notes"
    fillable = ("body",)
    optimistic_locking = True


class TestOptimisticLock:
    def test_stale_copy_raises(self, manager, database):
        doc = Document.create(manager, {"title": "v0"})
        first = Document.find(manager, doc.id)
        second = Document.find(manager, doc.id)

        first.title = "first"
        assert first.save() is True
        assert first.version == 1

        second.title = "second"
        with pytest.raises(OptimisticLockError) as exc_info:
            second.save()
        assert str(exc_info.value) == f"Optimistic lock failed for model [Document] id [{doc.id}]."
        assert exc_info.value.context.key == doc.id

        row = database.table("documents").where("id", doc.id).first()
        assert row["title"] == "first"
        assert row["version"] == 1

    def test_version_increments_per_update(self, manager):
        doc = Document.create(manager, {"title": "v0"})
        for expected in (1, 2, 3):
            doc.title = f"v{expected}"
            doc.save()
            assert doc.version == expected

    def test_existing_version_is_compared(self, manager, database):
        doc = Document(manager).force_fill({"title": "v0", "version": 5})
        doc.save()
        copy = Document.find(manager, doc.id)
        doc.title = "moved on"
        doc.save()
        assert doc.version == 6

        copy.title = "stale"
        with pytest.raises(OptimisticLockError):
            copy.save()

    def test_refreshed_copy_can_save(self, manager):
        doc = Document.create(manager, {"title": "v0"})
        stale = Document.find(manager, doc.id)
        doc.title = "v1"
        doc.save()

        stale.refresh()
        stale.title = "v2"
        assert stale.save() is True
        assert stale.version == 2


class TestTimestampLock:
    def test_stale_copy_raises_within_one_second(self, manager, database):
        note = StampedNote.create(manager, {"body": "v0"})
        first = StampedNote.find(manager, note.id)
        second = StampedNote.find(manager, note.id)
        before = first.updated_at

        first.body = "first"
        assert first.save() is True
        assert first.updated_at != before

        second.body = "second"
        with pytest.raises(OptimisticLockError):
            second.save()

        row = database.table("notes").where("id", note.id).first()
        assert row["body"] == "first"
        assert row["updated_at"] == first.updated_at

    def test_every_update_moves_the_column(self, manager):
        note = StampedNote.create(manager, {"body": "v0"})
        seen = {note.updated_at}
        for i in range(5):
            note.body = f"v{i + 1}"
            assert note.save() is True
            seen.add(note.updated_at)
        assert len(seen) == 6

    def test_second_resolution_format_still_detects_conflicts(self, make_manager):
        manager = make_manager(dates={"format": "%Y-%m-%d %H:%M:%S"})
        note = StampedNote.create(manager, {"body": "v0"})
        first = StampedNote.find(manager, note.id)
        second = StampedNote.find(manager, note.id)

        first.body = "first"
        first.save()
        assert first.updated_at != second.updated_at

        second.body = "second"
        with pytest.raises(OptimisticLockError):
            second.save()
