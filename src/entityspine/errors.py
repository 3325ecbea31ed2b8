"""
Structured error types for entityspine.

Every failure the mapping engine reports is a typed error carrying the model,
table, key or relation it concerns, so callers can branch on the type and log
the context without parsing messages.

Manifesto:
    - **Typed Error Hierarchy:** One error type per failure mode of the engine
    - **Rich Context:** Errors carry model/table/key metadata for logging
    - **Error Chaining:** Underlying exceptions are kept as ``cause``
    - **Propagate, don't swallow:** Driver errors from SQLAlchemy pass through
      unchanged; only engine-level conditions are wrapped

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                     EntitySpineError                            │
        │             (category, context, cause, to_dict)                 │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                 │
        │  MassAssignmentError     ModelNotFoundError    ValidationError  │
        │  (MASS_ASSIGNMENT)       (NOT_FOUND)           (VALIDATION)     │
        │                                                                 │
        │  RelationNotFoundError   LazyLoadingViolationError              │
        │  InvalidRelationError    (RELATION)                             │
        │                                                                 │
        │  OptimisticLockError     InvalidKeyError       QueryError       │
        │  (CONCURRENCY)           (CONFIG)              (QUERY)          │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> err = ModelNotFoundError("User", "users", 42)
    >>> err.context.key
    42
    >>> err.to_dict()["error_type"]
    'ModelNotFoundError'

Tags:
    error-handling, exception-hierarchy, error-context, entityspine, orm

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    MASS_ASSIGNMENT = "MASS_ASSIGNMENT"
    NOT_FOUND = "NOT_FOUND"
    RELATION = "RELATION"
    CONCURRENCY = "CONCURRENCY"
    VALIDATION = "VALIDATION"
    CONFIG = "CONFIG"
    QUERY = "QUERY"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only the fields relevant to a given failure are set; ``to_dict()`` drops
    the rest so log lines stay compact.
    """

    model: str | None = None
    table: str | None = None
    key: Any = None
    attribute: str | None = None
    relation: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for name in ["model", "table", "key", "attribute", "relation"]:
            value = getattr(self, name)
            if value is not None:
                result[name] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class EntitySpineError(Exception):
    """
    Base class for every error raised by the mapping engine.

    Subclasses set ``default_category``; the constructor accepts an explicit
    ``context`` and an optional ``cause`` which is chained as ``__cause__``.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> EntitySpineError:
        """Add context to this error (fluent API)."""
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


def _join(names: Iterable[str]) -> str:
    names = list(names)
    return ", ".join(names) if names else "none"


# =============================================================================
# ATTRIBUTE ERRORS
# =============================================================================


class MassAssignmentError(EntitySpineError):
    """A bulk fill tried to write an attribute that is guarded or not fillable."""

    default_category = ErrorCategory.MASS_ASSIGNMENT

    def __init__(
        self,
        model: str,
        table: str,
        attribute: str,
        *,
        fillable: Iterable[str] = (),
        guarded: Iterable[str] = (),
    ):
        self.fillable = tuple(fillable)
        self.guarded = tuple(guarded)
        message = (
            f"Attribute [{attribute}] is not fillable on model [{model}] (table {table}). "
            f"Fillable: {_join(self.fillable)}. Guarded: {_join(self.guarded)}."
        )
        super().__init__(
            message,
            context=ErrorContext(model=model, table=table, attribute=attribute),
        )


class ValidationError(EntitySpineError):
    """
    The configured validator rejected an entity before persisting.

    ``errors`` maps each failing field to its list of messages.
    """

    default_category = ErrorCategory.VALIDATION

    def __init__(
        self,
        errors: Mapping[str, list[str]],
        *,
        model: str | None = None,
        table: str | None = None,
        message: str = "Model validation failed.",
    ):
        super().__init__(message, context=ErrorContext(model=model, table=table))
        self.errors: dict[str, list[str]] = {k: list(v) for k, v in errors.items()}

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["errors"] = self.errors
        return result


# =============================================================================
# LOOKUP ERRORS
# =============================================================================


class ModelNotFoundError(EntitySpineError):
    """A required lookup (find_or_fail / first_or_fail) matched no row."""

    default_category = ErrorCategory.NOT_FOUND

    def __init__(self, model: str, table: str, key: Any = None):
        if key is None:
            message = f"No results for model [{model}] (table {table})."
        else:
            message = f"No results for model [{model}] (table {table}) with id [{key}]."
        super().__init__(message, context=ErrorContext(model=model, table=table, key=key))


# =============================================================================
# RELATION ERRORS
# =============================================================================


class RelationNotFoundError(EntitySpineError):
    """The named relation is not declared on the model."""

    default_category = ErrorCategory.RELATION

    def __init__(self, model: str, table: str, relation: str, available: Iterable[str] = ()):
        self.available = tuple(sorted(available))
        message = (
            f"Relation [{relation}] was not found on model [{model} (table {table})]. "
            f"Available: {_join(self.available)}."
        )
        super().__init__(
            message,
            context=ErrorContext(model=model, table=table, relation=relation),
        )


class InvalidRelationError(EntitySpineError):
    """The name resolves to something on the model that is not a relation descriptor."""

    default_category = ErrorCategory.RELATION

    def __init__(self, model: str, relation: str, found: str):
        message = (
            f"Relation [{relation}] on model [{model}] must be a relation descriptor, "
            f"got {found}."
        )
        super().__init__(message, context=ErrorContext(model=model, relation=relation))


class LazyLoadingViolationError(EntitySpineError):
    """A relation was loaded on access while lazy loading is prevented."""

    default_category = ErrorCategory.RELATION

    def __init__(self, model: str, relation: str):
        message = (
            f"Attempted to lazy load [{relation}] on model [{model}] "
            f"but lazy loading is disabled."
        )
        super().__init__(message, context=ErrorContext(model=model, relation=relation))


# =============================================================================
# PERSISTENCE ERRORS
# =============================================================================


class OptimisticLockError(EntitySpineError):
    """A versioned update matched zero rows: someone else changed the row first."""

    default_category = ErrorCategory.CONCURRENCY

    def __init__(self, model: str, key: Any, table: str | None = None):
        message = f"Optimistic lock failed for model [{model}] id [{key}]."
        super().__init__(message, context=ErrorContext(model=model, table=table, key=key))


class InvalidKeyError(EntitySpineError):
    """A non-incrementing primary key has a type the engine cannot generate."""

    default_category = ErrorCategory.CONFIG

    def __init__(self, model: str, key_type: str):
        message = (
            f"Cannot generate a primary key of type [{key_type}] for model [{model}]. "
            f"Supported: uuid, ulid, string."
        )
        super().__init__(message, context=ErrorContext(model=model, metadata={"key_type": key_type}))


class QueryError(EntitySpineError):
    """The query builder was asked for something it cannot express."""

    default_category = ErrorCategory.QUERY


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "EntitySpineError",
    "MassAssignmentError",
    "ValidationError",
    "ModelNotFoundError",
    "RelationNotFoundError",
    "InvalidRelationError",
    "LazyLoadingViolationError",
    "OptimisticLockError",
    "InvalidKeyError",
    "QueryError",
]
