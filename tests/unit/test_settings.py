"""Tests for ``entityspine.settings``: environment-driven configuration."""

from __future__ import annotations

from entityspine.settings import NamingStrategy, OrmSettings, clear_settings_cache, get_settings


class TestDefaults:
    def test_defaults(self):
        settings = OrmSettings()
        assert settings.environment == "production"
        assert settings.timestamps.enabled is True
        assert settings.timestamps.created_at_column == "created_at"
        assert settings.soft_deletes.enabled is False
        assert settings.soft_deletes.deleted_at_column == "deleted_at"
        assert settings.enforce_fillable is True
        assert settings.mass_assignment.throw_on_violation is True
        assert settings.lazy_loading.prevent is False
        assert settings.naming.hydrate is NamingStrategy.NONE
        assert settings.is_testing is False

    def test_testing_environment(self):
        assert OrmSettings(environment="testing").is_testing
        assert OrmSettings(environment="TEST").is_testing


class TestEnvironment:
    def test_nested_env_vars(self, monkeypatch):
        monkeypatch.setenv("ENTITYSPINE_SOFT_DELETES__ENABLED", "true")
        monkeypatch.setenv("ENTITYSPINE_LAZY_LOADING__PREVENT", "1")
        monkeypatch.setenv("ENTITYSPINE_NAMING__HYDRATE", "camel")
        settings = OrmSettings()
        assert settings.soft_deletes.enabled is True
        assert settings.lazy_loading.prevent is True
        assert settings.naming.hydrate is NamingStrategy.CAMEL

    def test_get_settings_caches(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("ENTITYSPINE_ENVIRONMENT", "testing")
        assert get_settings() is first
        clear_settings_cache()
        assert get_settings().environment == "testing"

    def test_force_reload(self):
        first = get_settings()
        assert get_settings(_force_reload=True) is not first
