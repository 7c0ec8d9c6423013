"""
Tests for fail-fast configuration validation.
"""

import pytest

from mcp_gateway.config import ConfigurationError, Settings, get_settings, settings


def make_settings(**overrides) -> Settings:
    values = {"database_url": "postgresql+asyncpg://u:p@localhost/db", **overrides}
    return Settings(_env_file=None, **values)


class TestSettings:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"database_url": ""},
            {"database_url": "sqlite:///gateway.db"},
            {"token_refresh_buffer_seconds": -1},
            {"catalog_schema_max_depth": 0},
        ],
    )
    def test_invalid_config_fails_fast(self, overrides):
        with pytest.raises(ConfigurationError):
            make_settings(**overrides)

    @pytest.mark.parametrize(
        ("region", "field"),
        [
            ("na", "upstream_endpoint_na"),
            ("EU", "upstream_endpoint_eu"),
            ("fe", "upstream_endpoint_fe"),
        ],
    )
    def test_upstream_endpoint_for(self, region, field):
        config = make_settings(**{field: f"https://{region.lower()}.example.com/mcp"})
        assert config.upstream_endpoint_for(region) == f"https://{region.lower()}.example.com/mcp"

    def test_unknown_region(self):
        with pytest.raises(ConfigurationError):
            make_settings().upstream_endpoint_for("mars")

    def test_get_settings_returns_module_instance(self):
        assert get_settings() is settings
