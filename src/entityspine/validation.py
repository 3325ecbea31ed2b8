"""
Pre-persist validation.

A model opts in by returning rules from ``validation_rules(operation)``
(``operation`` is ``"create"`` or ``"update"``). The manager's validator
receives the entity, its validation data and those rules; an empty rule
set never reaches the validator.

:class:`PydanticValidator` interprets rules as pydantic field definitions::

    def validation_rules(self, operation):
        return {
            "email": (EmailStr, ...),
            "age": (int, Field(ge=0)),
            "name": str,
        }

A bare annotation means "required". Failures raise
:class:`~entityspine.errors.ValidationError` whose ``errors`` map each field
to its messages.

Tags:
    validation, pydantic, entityspine

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, create_model
from pydantic import ValidationError as PydanticValidationError

from entityspine.errors import ValidationError

__all__ = ["NullValidator", "PydanticValidator"]


class NullValidator:
    """Accepts everything."""

    def validate(
        self,
        entity: Any,
        data: Mapping[str, Any],
        rules: Mapping[str, Any],
        operation: str,
    ) -> None:
        return None


class PydanticValidator:
    """Builds (and caches) a pydantic model per rule set and validates against it."""

    def __init__(self) -> None:
        self._models: dict[tuple[str, str, tuple[str, ...]], type[BaseModel]] = {}

    def validate(
        self,
        entity: Any,
        data: Mapping[str, Any],
        rules: Mapping[str, Any],
        operation: str,
    ) -> None:
        schema = self._schema_for(type(entity).__name__, operation, rules)
        try:
            schema.model_validate(dict(data))
        except PydanticValidationError as exc:
            errors: dict[str, list[str]] = {}
            for item in exc.errors():
                field = ".".join(str(part) for part in item["loc"]) or "__root__"
                errors.setdefault(field, []).append(item["msg"])
            raise ValidationError(
                errors,
                model=type(entity).__name__,
                table=getattr(entity, "table_name", None),
            ) from exc

    def _schema_for(
        self, model_name: str, operation: str, rules: Mapping[str, Any]
    ) -> type[BaseModel]:
        cache_key = (model_name, operation, tuple(f"{k}={rules[k]!r}" for k in sorted(rules)))
        schema = self._models.get(cache_key)
        if schema is None:
            fields = {
                name: rule if isinstance(rule, tuple) else (rule, ...)
                for name, rule in rules.items()
            }
            schema = create_model(
                f"{model_name}{operation.title()}Rules",
                __config__=ConfigDict(extra="ignore", arbitrary_types_allowed=True),
                **fields,
            )
            self._models[cache_key] = schema
        return schema
