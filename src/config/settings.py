"""Centralized configuration management using Pydantic Settings.

This module provides type-safe configuration with environment variable support,
validation, and clear defaults for the role-aware cache subsystem. It is the
single source of truth for property store, Redis, TTL and user-tracking settings.

Configuration can be overridden via environment variables (e.g., REDIS_HOST,
CACHE_KEY_SALT) and is validated at startup.

Example:
    Loading and validating settings:
    >>> from src.config.settings import settings
    >>> settings.validate_configuration()
    >>> print(settings.cache_max_ttl_seconds)
    600
"""

import logging
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

MIN_RECOMMENDED_SALT_LENGTH = 16


class Settings(BaseSettings):
    """Application settings loaded from environment variables with validation.

    Settings are loaded from:
    1. Environment variables (highest priority)
    2. .env file (if present)
    3. Class defaults (lowest priority)

    Attributes:
        MongoDB Configuration for the durable property store and row source
        Redis Configuration for the ephemeral cache tiers
        Cache Configuration for versioning, salting and TTLs
        User Tracking Configuration for state, history and sessions
        Logging Configuration for log levels and output format
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================================================
    # MongoDB Configuration (durable property store + row source)
    # ========================================================================

    mongodb_uri: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection URI for the durable property store",
    )

    mongodb_database: str = Field(
        default="rubric_reference_data",
        description="Database holding properties and sheet snapshots",
    )

    mongodb_timeout: int = Field(
        default=5,
        description="Server selection / connect timeout in seconds (single bounded attempt)",
        ge=1,
        le=60,
    )

    mongodb_properties_collection: str = Field(
        default="properties",
        description="Collection used as the durable key/value property store",
    )

    mongodb_sheets_collection: str = Field(
        default="sheets",
        description="Collection holding raw sheet rows keyed by sheet name",
    )

    # ========================================================================
    # Redis Cache Configuration
    # ========================================================================

    redis_enabled: bool = Field(
        default=True,
        description="Enable Redis caching layer for performance optimization",
    )

    redis_host: str = Field(
        default="localhost",
        description="Redis server host address",
    )

    redis_port: int = Field(
        default=6379,
        description="Redis server port",
        ge=1024,
        le=65535,
    )

    redis_password: str | None = Field(
        default=None,
        description="Redis server password (if authentication required)",
    )

    redis_ssl: bool = Field(
        default=False,
        description="Use SSL/TLS for Redis connection",
    )

    redis_max_connections: int = Field(
        default=20,
        description="Maximum connections in Redis connection pool",
        ge=1,
        le=100,
    )

    redis_socket_timeout: int = Field(
        default=2,
        description="Redis socket timeout in seconds",
        ge=1,
        le=60,
    )

    # ========================================================================
    # Cache Versioning and Key Configuration
    # ========================================================================

    cache_version: str = Field(
        default="1.0.0",
        description="Static semantic version prefixed to every master cache version token",
    )

    cache_key_salt: str | None = Field(
        default=None,
        description=(
            "Secret salt mixed into every hashed cache key. "
            "If unset, a per-process salt is generated and keys are flagged degraded"
        ),
    )

    cache_key_hash_length: int = Field(
        default=32,
        description="Number of base64 characters of the SHA-256 digest kept in each key",
        ge=8,
        le=44,
    )

    cache_version_refresh_seconds: int = Field(
        default=5,
        description=(
            "How long a process trusts its memoised master version before "
            "rereading it, so bumps from other processes are picked up"
        ),
        ge=0,
        le=600,
    )

    # Cache TTL Settings (in seconds)
    cache_max_ttl_seconds: int = Field(
        default=600,
        description="Hard ceiling applied to every scoped cache write (10 minutes)",
        ge=1,
        le=21600,
    )

    cache_default_ttl_seconds: int = Field(
        default=300,
        description="TTL used when a caller does not supply one",
        ge=1,
        le=21600,
    )

    cache_user_data_ttl_seconds: int = Field(
        default=14400,
        description="Requested TTL for user records (4 hours, clamped by the ceiling)",
        ge=1,
    )

    cache_role_config_ttl_seconds: int = Field(
        default=600,
        description="Requested TTL for role sheet / settings caches",
        ge=1,
    )

    cache_sheet_data_ttl_seconds: int = Field(
        default=14400,
        description="Requested TTL for raw sheet data (4 hours, clamped by the ceiling)",
        ge=1,
    )

    global_cache_staff_ttl_seconds: int = Field(
        default=3600,
        description="Fixed TTL of the global staff directory blob (1 hour)",
        ge=60,
        le=21600,
    )

    # ========================================================================
    # User Tracking Configuration
    # ========================================================================

    role_history_limit: int = Field(
        default=10,
        description="Maximum number of role change entries kept per user",
        ge=1,
        le=100,
    )

    session_duration_hours: int = Field(
        default=24,
        description="Lifetime of a stored user session",
        ge=1,
        le=168,
    )

    user_state_retention_days: int = Field(
        default=7,
        description="Stored user states older than this are removed by cleanup",
        ge=1,
    )

    role_history_retention_days: int = Field(
        default=30,
        description="Role history entries older than this are removed by cleanup",
        ge=1,
    )

    default_role: str = Field(
        default="Teacher",
        description="Role assigned to unknown or anonymous users",
    )

    default_year: int = Field(
        default=1,
        description="Observation year assigned when none can be determined",
        ge=0,
        le=3,
    )

    # ========================================================================
    # Logging Configuration
    # ========================================================================

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level for application logs. DEBUG shows cache HIT/MISS",
    )

    log_json: bool = Field(
        default=False,
        description="Emit JSON-formatted log lines instead of plain text",
    )

    # ========================================================================
    # Field Validators
    # ========================================================================

    @field_validator("cache_key_salt", mode="before")
    @classmethod
    def validate_salt(cls, value: str | None) -> str | None:
        """Treat a blank salt as unset.

        Args:
            value: The configured salt (can be None)

        Returns:
            The stripped salt, or None when blank
        """
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @field_validator("cache_default_ttl_seconds")
    @classmethod
    def validate_default_ttl(cls, default_ttl: int, info) -> int:
        """Validate that the default TTL does not exceed the hard ceiling.

        Args:
            default_ttl: The default TTL to validate
            info: Validation context containing data

        Returns:
            The validated default TTL unchanged

        Raises:
            ValueError: If default TTL > max TTL
        """
        if "cache_max_ttl_seconds" in info.data:
            max_ttl = info.data["cache_max_ttl_seconds"]
            if default_ttl > max_ttl:
                raise ValueError(
                    f"cache_default_ttl_seconds ({default_ttl}) cannot exceed "
                    f"cache_max_ttl_seconds ({max_ttl})"
                )
        return default_ttl

    # ========================================================================
    # Helper Properties
    # ========================================================================

    @property
    def redis_url(self) -> str:
        """Get the Redis connection URL with protocol-based SSL.

        Returns:
            ``rediss://`` URL when SSL is enabled, ``redis://`` otherwise
        """
        protocol = "rediss" if self.redis_ssl else "redis"
        auth_part = f":{self.redis_password}@" if self.redis_password else ""
        return f"{protocol}://{auth_part}{self.redis_host}:{self.redis_port}"

    @property
    def has_cache_salt(self) -> bool:
        """Whether a durable salt is configured."""
        return self.cache_key_salt is not None

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def validate_configuration(self) -> None:
        """Validate complete application configuration at startup.

        A missing or short salt is a degradation, not a fatal error: keys stay
        unguessable for the life of the process but change on every restart.

        Raises:
            ValueError: If configuration is invalid
        """
        logger.info("Validating application configuration...")

        if not self.has_cache_salt:
            logger.warning(
                "CACHE_KEY_SALT is not configured; a per-process salt will be generated "
                "and cache keys will not survive restarts"
            )
        elif len(self.cache_key_salt) < MIN_RECOMMENDED_SALT_LENGTH:
            logger.warning(
                f"CACHE_KEY_SALT is shorter than {MIN_RECOMMENDED_SALT_LENGTH} characters"
            )

        if self.cache_default_ttl_seconds > self.cache_max_ttl_seconds:
            error_msg = (
                f"Invalid TTL configuration: default ({self.cache_default_ttl_seconds}s) > "
                f"ceiling ({self.cache_max_ttl_seconds}s)"
            )
            logger.error(error_msg)
            raise ValueError(error_msg)

        if self.mongodb_properties_collection == self.mongodb_sheets_collection:
            error_msg = "Property store and sheet collections must be different"
            logger.error(error_msg)
            raise ValueError(error_msg)

        logger.info("Configuration validation passed")

    def print_config(self) -> None:
        """Print current configuration in a formatted table (excluding secrets)."""
        from rich.console import Console
        from rich.table import Table

        console = Console()
        table = Table(title="Role Cache Configuration", show_header=True)
        table.add_column("Setting", style="cyan", no_wrap=False)
        table.add_column("Value", style="magenta", no_wrap=False)

        mongodb_uri_display = self.mongodb_uri
        if "@" in mongodb_uri_display:
            mongodb_uri_display = "mongodb://***:***@" + mongodb_uri_display.split("@")[1]

        config_items = {
            "MongoDB URI": mongodb_uri_display,
            "Database": self.mongodb_database,
            "Redis": f"{self.redis_host}:{self.redis_port}"
            + (" (SSL)" if self.redis_ssl else ""),
            "Redis Enabled": "✓ Enabled" if self.redis_enabled else "✗ Disabled",
            "Cache Version": self.cache_version,
            "Version Refresh": f"{self.cache_version_refresh_seconds}s",
            "Key Salt": "configured" if self.has_cache_salt else "missing (degraded)",
            "TTL Ceiling": f"{self.cache_max_ttl_seconds}s",
            "Default TTL": f"{self.cache_default_ttl_seconds}s",
            "Global Staff TTL": f"{self.global_cache_staff_ttl_seconds}s",
            "Role History Limit": str(self.role_history_limit),
            "Log Level": self.log_level,
        }

        for key, value in config_items.items():
            table.add_row(key, str(value))

        console.print(table)


# Global settings instance - initialized once at module import
settings = Settings()
