"""
Shared pytest fixtures for entityspine tests.

This module provides:
- An in-memory SQLite engine (StaticPool) with the test schema
- ``Database`` / ``ModelManager`` wired to it
- A statement log fed by SQLAlchemy's ``before_cursor_execute`` event
- Settings cache isolation

Usage:
    def test_something(manager, query_log):
        User.create(manager, {"name": "Ada"})
        assert len(query_log) == 1
"""

import os
from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy import event

from entityspine import Database, ModelManager, OrmSettings, clear_settings_cache, create_engine

from _support.models import SCHEMA, CountingObserver


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)
        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Start every test from a clean settings cache and no ENTITYSPINE_ env."""
    for key in list(os.environ):
        if key.startswith("ENTITYSPINE_"):
            monkeypatch.delenv(key)
    clear_settings_cache()
    CountingObserver.calls = []
    yield
    clear_settings_cache()


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def settings() -> OrmSettings:
    return OrmSettings(environment="testing")


@pytest.fixture
def engine():
    eng = create_engine("sqlite:///:memory:")
    yield eng
    eng.dispose()


@pytest.fixture
def database(engine) -> Generator[Database, None, None]:
    db = Database(engine)
    for ddl in SCHEMA:
        db.statement(ddl)
    yield db
    db.close()


@pytest.fixture
def manager(database: Database, settings: OrmSettings) -> ModelManager:
    return ModelManager(database, settings)


@pytest.fixture
def make_manager(database: Database):
    """Build a manager over the shared database with custom settings."""

    def build(**overrides) -> ModelManager:
        overrides.setdefault("environment", "testing")
        return ModelManager(database, OrmSettings(**overrides))

    return build


@pytest.fixture
def query_log(engine) -> Generator[list[str], None, None]:
    """SQL statements executed while the test runs (SELECT/INSERT/...)."""
    statements: list[str] = []

    def record(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    event.listen(engine, "before_cursor_execute", record)
    yield statements
    event.remove(engine, "before_cursor_execute", record)
