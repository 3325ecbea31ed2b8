"""
Centralized settings for entityspine.

:class:`OrmSettings` holds the engine-wide defaults that every model falls
back to when it does not override a behaviour itself: timestamp and
soft-delete columns, mass-assignment enforcement, the lazy-loading guard,
date handling, validation and the naming strategy.

All fields can be set through ``ENTITYSPINE_*`` environment variables, with
``__`` separating nested sections::

    ENTITYSPINE_SOFT_DELETES__ENABLED=true
    ENTITYSPINE_LAZY_LOADING__PREVENT=true
    ENTITYSPINE_DATES__TIMEZONE=Europe/Berlin
    ENTITYSPINE_NAMING__HYDRATE=camel

Tags:
    entityspine, configuration, settings, pydantic, caching

Doc-Types:
    api-reference
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class NamingStrategy(str, Enum):
    """How storage column names map to in-memory attribute keys."""

    NONE = "none"
    CAMEL = "camel"


class TimestampSettings(BaseModel):
    enabled: bool = True
    created_at_column: str = "created_at"
    updated_at_column: str = "updated_at"


class SoftDeleteSettings(BaseModel):
    enabled: bool = False
    deleted_at_column: str = "deleted_at"


class MassAssignmentSettings(BaseModel):
    throw_on_violation: bool = True


class LazyLoadingSettings(BaseModel):
    prevent: bool = False
    allow_testing: bool = False
    allowed_relations: list[str] = Field(default_factory=list)


class DateSettings(BaseModel):
    timezone: str | None = Field(default=None, description="IANA zone name; UTC when unset")
    format: str | None = Field(default=None, description="strftime pattern; ISO-8601 when unset")


class ValidationSettings(BaseModel):
    enabled: bool = True


class NamingSettings(BaseModel):
    hydrate: NamingStrategy = NamingStrategy.NONE


class OrmSettings(BaseSettings):
    """Engine-wide defaults for entityspine models."""

    model_config = SettingsConfigDict(
        env_prefix="ENTITYSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # ── Meta ─────────────────────────────────────────────────────
    environment: str = Field(default="production", description="Runtime environment name")
    log_level: str = Field(default="INFO")

    # ── Columns ──────────────────────────────────────────────────
    timestamps: TimestampSettings = Field(default_factory=TimestampSettings)
    soft_deletes: SoftDeleteSettings = Field(default_factory=SoftDeleteSettings)

    # ── Mass assignment ──────────────────────────────────────────
    enforce_fillable: bool = True
    mass_assignment: MassAssignmentSettings = Field(default_factory=MassAssignmentSettings)

    # ── Relations ────────────────────────────────────────────────
    lazy_loading: LazyLoadingSettings = Field(default_factory=LazyLoadingSettings)

    # ── Dates / validation / naming ──────────────────────────────
    dates: DateSettings = Field(default_factory=DateSettings)
    validation: ValidationSettings = Field(default_factory=ValidationSettings)
    naming: NamingSettings = Field(default_factory=NamingSettings)

    @property
    def is_testing(self) -> bool:
        return self.environment.lower() in ("testing", "test")


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, OrmSettings] = {}


def get_settings(*, _force_reload: bool = False) -> OrmSettings:
    """Load, validate, and cache an :class:`OrmSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]
    settings = OrmSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()


__all__ = [
    "NamingStrategy",
    "TimestampSettings",
    "SoftDeleteSettings",
    "MassAssignmentSettings",
    "LazyLoadingSettings",
    "DateSettings",
    "ValidationSettings",
    "NamingSettings",
    "OrmSettings",
    "get_settings",
    "clear_settings_cache",
]
