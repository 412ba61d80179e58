"""Tests for instruction_spine.core.settings."""

from __future__ import annotations

from pathlib import Path

import pytest

from instruction_spine.core.errors import ConfigError
from instruction_spine.core.settings import CatalogSettings, clear_settings_cache, get_settings


class TestDefaults:
    def test_defaults(self):
        s = CatalogSettings()
        assert s.dir == Path("instructions")
        assert s.enable_mutation is False
        assert s.bucket_size_minutes == 60
        assert s.bucket_count == 24
        assert s.tier_thresholds == (80, 70, 60, 20)
        assert s.usage_file_path is None

    def test_trace_forces_debug(self):
        assert CatalogSettings(trace=True).effective_log_level == "DEBUG"
        assert CatalogSettings(log_level="WARNING").effective_log_level == "WARNING"

    def test_json_logs(self):
        assert CatalogSettings(log_format="auto").json_logs() is None
        assert CatalogSettings(log_format="json").json_logs() is True
        assert CatalogSettings(log_format="console").json_logs() is False


class TestEnvironment:
    def test_prefixed_env(self, monkeypatch):
        monkeypatch.setenv("INSTRUCTIONS_DIR", "/tmp/catalog")
        monkeypatch.setenv("INSTRUCTIONS_BUCKET_COUNT", "6")
        s = CatalogSettings()
        assert s.dir == Path("/tmp/catalog")
        assert s.bucket_count == 6

    @pytest.mark.parametrize("var", ["INSTRUCTIONS_ENABLE_MUTATION", "MCP_ENABLE_MUTATION"])
    def test_enable_mutation_aliases(self, monkeypatch, var):
        monkeypatch.setenv(var, "1")
        assert CatalogSettings().enable_mutation is True


class TestValidation:
    def test_thresholds_must_descend(self):
        with pytest.raises(ValueError):
            CatalogSettings(tier_thresholds=(80, 80, 60, 20))

    def test_thresholds_in_range(self):
        with pytest.raises(ValueError):
            CatalogSettings(tier_thresholds=(120, 70, 60, 20))

    def test_get_settings_wraps_errors(self):
        with pytest.raises(ConfigError):
            get_settings(bucket_count=0)


class TestCache:
    def test_cached_instance(self):
        clear_settings_cache()
        assert get_settings() is get_settings()

    def test_overrides_bypass_cache(self, tmp_path):
        base = get_settings()
        custom = get_settings(dir=tmp_path)
        assert custom is not base
        assert custom.dir == tmp_path
        assert get_settings() is base

    def test_force_reload(self):
        first = get_settings()
        assert get_settings(_force_reload=True) is not first
