"""snake_case / camelCase key transforms for the ``camel`` naming strategy."""

from __future__ import annotations

import re
from collections.abc import Mapping
from functools import lru_cache
from typing import Any

from entityspine.settings import NamingStrategy

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")


@lru_cache(maxsize=1024)
def to_camel(name: str) -> str:
    """``first_name`` -> ``firstName``. Names without underscores pass through."""
    if "_" not in name:
        return name
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


@lru_cache(maxsize=1024)
def to_snake(name: str) -> str:
    """``firstName`` -> ``first_name``."""
    return _CAMEL_BOUNDARY.sub(r"_\1", name).lower()


def table_name_for(class_name: str) -> str:
    """Default table name: snake-cased class name plus ``s`` (``BlogPost`` -> ``blog_posts``)."""
    return to_snake(class_name) + "s"


class Naming:
    """Applies a :class:`NamingStrategy` to single keys and whole rows."""

    def __init__(self, strategy: NamingStrategy | str = NamingStrategy.NONE):
        self.strategy = NamingStrategy(strategy)

    @property
    def is_camel(self) -> bool:
        return self.strategy is NamingStrategy.CAMEL

    def attribute(self, column: str) -> str:
        """Memory key for a storage column name."""
        return to_camel(column) if self.is_camel else column

    def column(self, attribute: str) -> str:
        """Storage column name for a memory key."""
        return to_snake(attribute) if self.is_camel else attribute

    def hydrate(self, row: Mapping[str, Any]) -> dict[str, Any]:
        if not self.is_camel:
            return dict(row)
        return {to_camel(k): v for k, v in row.items()}

    def storage(self, attributes: Mapping[str, Any]) -> dict[str, Any]:
        if not self.is_camel:
            return dict(attributes)
        return {to_snake(k): v for k, v in attributes.items()}

    def __repr__(self) -> str:
        return f"Naming({self.strategy.value!r})"
