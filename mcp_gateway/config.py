"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_pool_size: int = 25
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Ads MCP Gateway"
    api_version: str = "0.1.0"
    api_description: str = "Authenticating, tier-gating proxy for the advertising MCP server"
    public_base_url: str = "http://localhost:8000"

    # Credential formats
    api_key_prefix: str = "sk_live_"
    session_prefix: str = "session_"

    # Identity cache (API key fingerprint -> principal)
    identity_cache_ttl_seconds: int = 300

    # OAuth authorization server (inbound)
    auth_code_ttl_seconds: int = 600  # 10 minutes
    session_ttl_seconds: int = 604800  # 7 days

    # Login with Amazon (upstream OAuth)
    lwa_client_id: str = ""
    lwa_client_secret: str = ""
    lwa_token_url: str = "https://api.amazon.com/auth/o2/token"
    token_refresh_buffer_seconds: int = 300  # 5 minutes
    token_refresh_timeout_seconds: float = 10.0
    token_refresh_serialize: bool = True

    # Upstream MCP endpoints by advertising region
    upstream_endpoint_na: str = "http://localhost:9000/mcp"
    upstream_endpoint_eu: str = "http://localhost:9000/mcp"
    upstream_endpoint_fe: str = "http://localhost:9000/mcp"
    upstream_timeout_seconds: float = 30.0

    # Account resolution
    require_explicit_account: bool = False

    # Catalog post-processing
    catalog_schema_max_depth: int = 3

    # Customer-facing links used in error messages
    billing_url: str = "https://app.geenie.io/dashboard/billing"
    settings_url: str = "https://app.geenie.io/dashboard/settings"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console
    service_name: str = "ads-mcp-gateway"

    # Observability - Metrics
    metrics_enabled: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if self.token_refresh_buffer_seconds < 0:
            errors.append("TOKEN_REFRESH_BUFFER_SECONDS cannot be negative")

        if self.catalog_schema_max_depth < 1:
            errors.append("CATALOG_SCHEMA_MAX_DEPTH must be at least 1")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    def upstream_endpoint_for(self, region: str) -> str:
        """Get the upstream MCP endpoint for an advertising region (na/eu/fe)."""
        endpoints = {
            "na": self.upstream_endpoint_na,
            "eu": self.upstream_endpoint_eu,
            "fe": self.upstream_endpoint_fe,
        }
        try:
            return endpoints[region.lower()]
        except KeyError:
            raise ConfigurationError(f"Unknown advertising region: {region}") from None


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
