"""Tests for naming transforms, surrogate keys and timestamp helpers."""

from __future__ import annotations

import re
import uuid
from datetime import UTC, datetime

import pytest

from entityspine.errors import InvalidKeyError
from entityspine.keys import KeyType, generate_key
from entityspine.naming import Naming, table_name_for, to_camel, to_snake
from entityspine.timestamps import (
    advance_timestamp,
    format_datetime,
    generate_ulid,
    parse_datetime,
    storage_now,
)


class TestNaming:
    @pytest.mark.parametrize(
        ("snake", "camel"),
        [("first_name", "firstName"), ("id", "id"), ("created_at", "createdAt"), ("a_b_c", "aBC")],
    )
    def test_to_camel(self, snake, camel):
        assert to_camel(snake) == camel

    def test_to_snake(self):
        assert to_snake("firstName") == "first_name"
        assert to_snake("BlogPost") == "blog_post"

    def test_table_name_for(self):
        assert table_name_for("BlogPost") == "blog_posts"

    def test_camel_strategy_maps_rows(self):
        naming = Naming("camel")
        assert naming.hydrate({"first_name": "Ada"}) == {"firstName": "Ada"}
        assert naming.storage({"firstName": "Ada"}) == {"first_name": "Ada"}
        assert naming.attribute("updated_at") == "updatedAt"

    def test_none_strategy_is_identity(self):
        naming = Naming()
        assert naming.hydrate({"first_name": "Ada"}) == {"first_name": "Ada"}
        assert naming.column("firstName") == "firstName"


class TestKeys:
    def test_uuid(self):
        value = generate_key(KeyType.UUID, "Token")
        assert uuid.UUID(value).version == 4

    def test_ulid(self):
        value = generate_key("ulid", "Entry")
        assert re.fullmatch(r"[0-9A-HJKMNP-TV-Z]{26}", value)

    def test_ulids_sort_by_time(self):
        first = generate_ulid()
        later = generate_ulid()
        assert first[:10] <= later[:10]

    def test_string_is_hex(self):
        assert re.fullmatch(r"[0-9a-f]{32}", generate_key("string", "Thing"))

    @pytest.mark.parametrize("key_type", ["int", "snowflake"])
    def test_unsupported_type_raises(self, key_type):
        with pytest.raises(InvalidKeyError) as exc_info:
            generate_key(key_type, "Thing")
        assert exc_info.value.context.model == "Thing"
        assert exc_info.value.context.metadata["key_type"] == key_type


class TestTimestamps:
    def test_format_naive_assumes_zone(self):
        assert format_datetime(datetime(2024, 1, 1, 8, 30)) == "2024-01-01T08:30:00+00:00"

    def test_parse_with_format(self):
        parsed = parse_datetime("01/02/2024", "%d/%m/%Y")
        assert parsed == datetime(2024, 2, 1, tzinfo=UTC)

    def test_parse_digit_string_as_epoch(self):
        assert parse_datetime("86400") == datetime(1970, 1, 2, tzinfo=UTC)

    def test_parse_rejects_bool(self):
        with pytest.raises(ValueError):
            parse_datetime(True)

    def test_storage_now_round_trips(self):
        stamp = storage_now()
        assert parse_datetime(stamp).tzinfo is not None

    def test_advance_timestamp_carries_microseconds(self):
        stamp = advance_timestamp(None)
        assert re.search(r"\.\d{6}\+00:00$", stamp)

    def test_advance_timestamp_moves_past_a_later_value(self):
        later = "2999-01-01T00:00:00.000000+00:00"
        assert advance_timestamp(later) == "2999-01-01T00:00:00.000001+00:00"

    def test_advance_timestamp_steps_by_format_resolution(self):
        fmt = "%Y-%m-%d %H:%M:%S"
        assert advance_timestamp("2999-01-01 00:00:00", fmt) == "2999-01-01 00:00:01"

    def test_advance_timestamp_differs_from_current_tick(self):
        fmt = "%Y-%m-%d %H:%M"
        current = storage_now(fmt)
        assert advance_timestamp(current, fmt) != current
