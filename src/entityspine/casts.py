"""
Attribute casting.

A model declares ``casts = {"age": "int", "meta": "json", "status": Status}``.
At class-definition time each entry is compiled once into a :class:`Cast`
object holding an inverse pair of transforms:

    ┌──────────────┐   get()  (read)     ┌──────────────┐
    │ stored value │ ──────────────────▶ │ typed value  │
    │  (row/raw)   │ ◀────────────────── │  (in memory) │
    └──────────────┘   set()  (storage)  └──────────────┘

``None`` always passes through both directions untouched.

Supported kinds:
    - ``int`` / ``integer``, ``float`` / ``double``, ``bool`` / ``boolean``,
      ``str`` / ``string``
    - ``json`` / ``array``: stored as a JSON string
    - ``datetime`` / ``date`` / ``timestamp``: stored as a formatted string,
      read as an aware :class:`datetime.datetime`
    - any :class:`enum.Enum` subclass: stored by value, read by value then name
    - any object implementing :class:`Cast`
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any

from entityspine.timestamps import format_datetime, parse_datetime


@dataclass(frozen=True)
class DateContext:
    """Date format and zone a model resolved from its options."""

    format: str | None = None
    timezone: str | None = None


class Cast:
    """Base cast: identity in both directions."""

    name = "raw"

    def get(self, value: Any, dates: DateContext) -> Any:
        return value

    def set(self, value: Any, dates: DateContext) -> Any:
        return value

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class IntegerCast(Cast):
    name = "int"

    def get(self, value: Any, dates: DateContext) -> Any:
        return int(value)

    def set(self, value: Any, dates: DateContext) -> Any:
        return int(value)


class FloatCast(Cast):
    name = "float"

    def get(self, value: Any, dates: DateContext) -> Any:
        return float(value)

    def set(self, value: Any, dates: DateContext) -> Any:
        return float(value)


_FALSE_STRINGS = frozenset({"", "0", "false", "no", "off"})


class BooleanCast(Cast):
    name = "bool"

    def get(self, value: Any, dates: DateContext) -> Any:
        if isinstance(value, str):
            return value.strip().lower() not in _FALSE_STRINGS
        return bool(value)

    def set(self, value: Any, dates: DateContext) -> Any:
        return self.get(value, dates)


class StringCast(Cast):
    name = "string"

    def get(self, value: Any, dates: DateContext) -> Any:
        return str(value)

    def set(self, value: Any, dates: DateContext) -> Any:
        return str(value)


class JsonCast(Cast):
    """Structured value kept as a JSON document in storage.

    Strings handed to ``set`` are assumed to be encoded already.
    """

    name = "json"

    def get(self, value: Any, dates: DateContext) -> Any:
        if isinstance(value, (str, bytes, bytearray)):
            return json.loads(value)
        return value

    def set(self, value: Any, dates: DateContext) -> Any:
        if isinstance(value, str):
            return value
        return json.dumps(value, default=_json_default)


class DateTimeCast(Cast):
    name = "datetime"

    def get(self, value: Any, dates: DateContext) -> Any:
        return parse_datetime(value, dates.format, dates.timezone)

    def set(self, value: Any, dates: DateContext) -> Any:
        parsed = parse_datetime(value, dates.format, dates.timezone)
        return format_datetime(parsed, dates.format, dates.timezone)


class EnumCast(Cast):
    """Stored by ``.value``; read by value first, then by member name."""

    name = "enum"

    def __init__(self, enum_class: type[Enum]):
        self.enum_class = enum_class

    def get(self, value: Any, dates: DateContext) -> Any:
        if isinstance(value, self.enum_class):
            return value
        try:
            return self.enum_class(value)
        except ValueError:
            pass
        try:
            return self.enum_class[str(value)]
        except KeyError:
            raise ValueError(
                f"Value [{value}] is not a valid case for enum [{self.enum_class.__name__}]."
            ) from None

    def set(self, value: Any, dates: DateContext) -> Any:
        if isinstance(value, Enum):
            return value.value
        return self.get(value, dates).value

    def __repr__(self) -> str:
        return f"EnumCast({self.enum_class.__name__})"


_BUILTIN_CASTS: dict[str, Cast] = {}
for _cast, _aliases in (
    (IntegerCast(), ("int", "integer")),
    (FloatCast(), ("float", "double", "real")),
    (BooleanCast(), ("bool", "boolean")),
    (StringCast(), ("str", "string")),
    (JsonCast(), ("json", "array", "object")),
    (DateTimeCast(), ("datetime", "date", "timestamp")),
):
    for _alias in _aliases:
        _BUILTIN_CASTS[_alias] = _cast


def compile_cast(spec: str | type | Cast) -> Cast:
    """Turn one cast declaration into a :class:`Cast` instance."""
    if isinstance(spec, Cast):
        return spec
    if isinstance(spec, type) and issubclass(spec, Enum):
        return EnumCast(spec)
    if isinstance(spec, type) and issubclass(spec, Cast):
        return spec()
    if isinstance(spec, str):
        try:
            return _BUILTIN_CASTS[spec.lower()]
        except KeyError:
            raise ValueError(f"Unknown cast type [{spec}]") from None
    raise TypeError(f"Unsupported cast declaration: {spec!r}")


def compile_casts(casts: Mapping[str, str | type | Cast]) -> dict[str, Cast]:
    return {key: compile_cast(spec) for key, spec in casts.items()}


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps(value: Any) -> str:
    """Encode a serialized entity tree with the same rules as the json cast."""
    return json.dumps(value, default=_json_default)
