"""Configuration management for Retention Rules.

This module handles application configuration using Pydantic settings.
Configuration can be loaded from environment variables or .env files.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with
    the RETENTION_RULES_ prefix (e.g., RETENTION_RULES_DATABASE_URL).
    """

    model_config = SettingsConfigDict(
        env_prefix="RETENTION_RULES_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database Configuration
    database_url: str = Field(
        default="sqlite:///retention_rules.sqlite3",
        description="SQLAlchemy URL of the rule store and pending message database",
    )
    database_echo: bool = Field(
        default=False,
        description="Echo SQL statements (SQLAlchemy engine echo)",
    )

    # Rule set cache
    rule_cache_enabled: bool = Field(
        default=True,
        description="Cache per-user rule snapshots between classification batches",
    )
    rule_cache_ttl: float = Field(
        default=5.0,
        description="Rule snapshot cache time-to-live in seconds",
    )

    # Multi-user
    default_owner: str = Field(
        default="default@user.com",
        description="Placeholder owner assigned to rows created before multi-user support",
    )
    test_user: str = Field(
        default="test-scenarios@test.local",
        description="Isolated owner used for scenario testing; never a real login",
    )

    # Application Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
