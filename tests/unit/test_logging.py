"""Tests for ``entityspine.logging``: pipeline configuration and entity context."""

from __future__ import annotations

import json
from collections.abc import Generator

import pytest
import structlog
from structlog.contextvars import get_contextvars

from entityspine import OrmSettings
from entityspine.logging import configure_logging, entity_context, get_logger


@pytest.fixture
def _reset_structlog() -> Generator[None, None, None]:
    yield
    structlog.reset_defaults()


class TestEntityContext:
    def test_binds_and_unbinds(self):
        with entity_context("Post", 7) as bound:
            assert bound == {"entity.model": "Post", "entity.key": 7}
            assert get_contextvars()["entity.model"] == "Post"
        assert "entity.model" not in get_contextvars()

    def test_nested_blocks_restore_outer_values(self):
        with entity_context("Post", 1):
            with entity_context("Post", 2):
                assert get_contextvars()["entity.key"] == 2
            assert get_contextvars()["entity.key"] == 1
        assert "entity.key" not in get_contextvars()


@pytest.mark.usefixtures("_reset_structlog")
class TestConfigureLogging:
    def test_level_comes_from_settings(self, capsys):
        configure_logging(json_format=True, settings=OrmSettings(log_level="WARNING"))
        logger = get_logger("entityspine.test")
        logger.info("below_threshold")
        logger.warning("above_threshold", table="users")

        lines = capsys.readouterr().out.strip().splitlines()
        assert len(lines) == 1
        event = json.loads(lines[0])
        assert event["event"] == "above_threshold"
        assert event["level"] == "warning"
        assert event["table"] == "users"

    def test_entity_context_reaches_rendered_events(self, capsys):
        configure_logging(level="DEBUG", json_format=True)
        with entity_context("User", 3):
            get_logger("entityspine.test").debug("audit_written")

        event = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert event["entity.model"] == "User"
        assert event["entity.key"] == 3
