#!/usr/bin/env python3
"""
Centralized Configuration Module using Pydantic Settings

This module provides type-safe, environment-based configuration for the
ingestion broker: resource refresh cadence, staleness ceilings, retry bounds,
streaming admission policy and logging.

Architectural Decision: Pydantic Settings for type safety and validation
- Environment variable loading with .env support
- Type validation at startup (fail fast on misconfiguration)
- Easy testing with override mechanisms

Author: System Architect
Date: 2025-12-05
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ingestion_broker.core.config.constants import (
    DEFAULT_ATTEMPT_COUNT,
    DEFAULT_AUTH_TOKEN_REFRESH_INTERVAL,
    DEFAULT_AUTH_TOKEN_RETRY_INTERVAL,
    DEFAULT_MAX_STALENESS,
    DEFAULT_RAW_SIZE_THRESHOLD_BYTES,
    DEFAULT_RESOURCES_REFRESH_INTERVAL,
    DEFAULT_RESOURCES_RETRY_INTERVAL,
    MAX_STREAMING_SIZE_BYTES,
    RANKING_BUCKET_COUNT,
    RANKING_BUCKET_DURATION_SECONDS,
)


class ResourceManagerSettings(BaseSettings):
    """
    Resource manager refresh configuration.

    STAGE-RM: Refresh cadence and staleness ceilings

    Two independent refresh tasks (ingestion resources, auth token), each with
    a regular interval and a shorter interval used after a failed refresh.
    """

    RESOURCES_REFRESH_INTERVAL: float = Field(
        default=DEFAULT_RESOURCES_REFRESH_INTERVAL, description="Seconds between resource refreshes"
    )
    RESOURCES_RETRY_INTERVAL: float = Field(
        default=DEFAULT_RESOURCES_RETRY_INTERVAL, description="Seconds before retrying a failed resource refresh"
    )
    AUTH_TOKEN_REFRESH_INTERVAL: float = Field(
        default=DEFAULT_AUTH_TOKEN_REFRESH_INTERVAL, description="Seconds between auth token refreshes"
    )
    AUTH_TOKEN_RETRY_INTERVAL: float = Field(
        default=DEFAULT_AUTH_TOKEN_RETRY_INTERVAL, description="Seconds before retrying a failed token refresh"
    )
    RESOURCES_MAX_STALENESS: float = Field(
        default=DEFAULT_MAX_STALENESS, description="Max age (seconds) of served resources"
    )
    AUTH_TOKEN_MAX_STALENESS: float = Field(
        default=DEFAULT_MAX_STALENESS, description="Max age (seconds) of served auth token"
    )
    REFRESH_SHUTDOWN_TIMEOUT: float = Field(
        default=5.0, description="Grace period for an in-flight refresh on close"
    )
    RANKING_BUCKET_COUNT: int = Field(default=RANKING_BUCKET_COUNT, description="Rank history buckets")
    RANKING_BUCKET_DURATION: float = Field(
        default=RANKING_BUCKET_DURATION_SECONDS, description="Seconds covered by one rank bucket"
    )

    @field_validator(
        "RESOURCES_REFRESH_INTERVAL",
        "RESOURCES_RETRY_INTERVAL",
        "AUTH_TOKEN_REFRESH_INTERVAL",
        "AUTH_TOKEN_RETRY_INTERVAL",
        "RESOURCES_MAX_STALENESS",
        "AUTH_TOKEN_MAX_STALENESS",
        "RANKING_BUCKET_DURATION",
    )
    @classmethod
    def validate_positive(cls, v):
        """Intervals and ceilings must be positive."""
        if v <= 0:
            raise ValueError("must be positive")
        return v

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class RetrySettings(BaseSettings):
    """
    Resource-scoped retry configuration.

    STAGE-RETRY: Attempt bound and per-attempt timeout
    """

    RESOURCE_RETRY_ATTEMPTS: int = Field(default=DEFAULT_ATTEMPT_COUNT, ge=1, description="Attempts per action")
    ATTEMPT_TIMEOUT: float | None = Field(default=None, description="Per-attempt timeout in seconds")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class StreamingSettings(BaseSettings):
    """
    Managed streaming configuration.

    STAGE-ROUTE: Direct-path attempts, backoff and admission policy
    """

    STREAMING_ATTEMPT_COUNT: int = Field(default=DEFAULT_ATTEMPT_COUNT, ge=1, description="Direct-path attempts")
    STREAMING_RETRY_BASE_DELAY: float = Field(default=1.0, description="Initial backoff delay (seconds)")
    STREAMING_RETRY_MAX_DELAY: float = Field(default=30.0, description="Maximum backoff delay (seconds)")
    QUEUING_POLICY_FACTOR: float = Field(default=1.0, gt=0, description="Scales the raw size threshold")
    RAW_SIZE_THRESHOLD: int = Field(
        default=DEFAULT_RAW_SIZE_THRESHOLD_BYTES, description="Default raw size threshold (bytes)"
    )
    MAX_STREAMING_SIZE: int = Field(
        default=MAX_STREAMING_SIZE_BYTES, description="Transmitted-size ceiling for streaming (bytes)"
    )
    PERMANENT_FAILURES_TERMINAL: bool = Field(
        default=True, description="Raise permanent direct-path errors instead of falling back"
    )

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class LoggingSettings(BaseSettings):
    """
    Logging configuration for structured logging.

    STAGE-L: Logging configuration
    """

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class Settings(BaseSettings):
    """
    Main settings class that aggregates all configuration sections.

    Usage:
        from ingestion_broker.core.config.settings import get_settings

        settings = get_settings()
        interval = settings.resource_manager.RESOURCES_REFRESH_INTERVAL
        factor = settings.streaming.QUEUING_POLICY_FACTOR
    """

    # Resource manager settings
    RESOURCES_REFRESH_INTERVAL: float = Field(default=DEFAULT_RESOURCES_REFRESH_INTERVAL)
    RESOURCES_RETRY_INTERVAL: float = Field(default=DEFAULT_RESOURCES_RETRY_INTERVAL)
    AUTH_TOKEN_REFRESH_INTERVAL: float = Field(default=DEFAULT_AUTH_TOKEN_REFRESH_INTERVAL)
    AUTH_TOKEN_RETRY_INTERVAL: float = Field(default=DEFAULT_AUTH_TOKEN_RETRY_INTERVAL)
    RESOURCES_MAX_STALENESS: float = Field(default=DEFAULT_MAX_STALENESS)
    AUTH_TOKEN_MAX_STALENESS: float = Field(default=DEFAULT_MAX_STALENESS)
    REFRESH_SHUTDOWN_TIMEOUT: float = Field(default=5.0)
    RANKING_BUCKET_COUNT: int = Field(default=RANKING_BUCKET_COUNT)
    RANKING_BUCKET_DURATION: float = Field(default=RANKING_BUCKET_DURATION_SECONDS)

    # Retry settings
    RESOURCE_RETRY_ATTEMPTS: int = Field(default=DEFAULT_ATTEMPT_COUNT)
    ATTEMPT_TIMEOUT: float | None = Field(default=None)

    # Streaming settings
    STREAMING_ATTEMPT_COUNT: int = Field(default=DEFAULT_ATTEMPT_COUNT)
    STREAMING_RETRY_BASE_DELAY: float = Field(default=1.0)
    STREAMING_RETRY_MAX_DELAY: float = Field(default=30.0)
    QUEUING_POLICY_FACTOR: float = Field(default=1.0)
    RAW_SIZE_THRESHOLD: int = Field(default=DEFAULT_RAW_SIZE_THRESHOLD_BYTES)
    MAX_STREAMING_SIZE: int = Field(default=MAX_STREAMING_SIZE_BYTES)
    PERMANENT_FAILURES_TERMINAL: bool = Field(default=True)

    # Logging settings
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    # Nested configuration views (validated on access)
    @property
    def resource_manager(self) -> ResourceManagerSettings:
        """Get resource manager settings."""
        return ResourceManagerSettings(
            RESOURCES_REFRESH_INTERVAL=self.RESOURCES_REFRESH_INTERVAL,
            RESOURCES_RETRY_INTERVAL=self.RESOURCES_RETRY_INTERVAL,
            AUTH_TOKEN_REFRESH_INTERVAL=self.AUTH_TOKEN_REFRESH_INTERVAL,
            AUTH_TOKEN_RETRY_INTERVAL=self.AUTH_TOKEN_RETRY_INTERVAL,
            RESOURCES_MAX_STALENESS=self.RESOURCES_MAX_STALENESS,
            AUTH_TOKEN_MAX_STALENESS=self.AUTH_TOKEN_MAX_STALENESS,
            REFRESH_SHUTDOWN_TIMEOUT=self.REFRESH_SHUTDOWN_TIMEOUT,
            RANKING_BUCKET_COUNT=self.RANKING_BUCKET_COUNT,
            RANKING_BUCKET_DURATION=self.RANKING_BUCKET_DURATION,
        )

    @property
    def retry(self) -> RetrySettings:
        """Get resource retry settings."""
        return RetrySettings(
            RESOURCE_RETRY_ATTEMPTS=self.RESOURCE_RETRY_ATTEMPTS,
            ATTEMPT_TIMEOUT=self.ATTEMPT_TIMEOUT,
        )

    @property
    def streaming(self) -> StreamingSettings:
        """Get managed streaming settings."""
        return StreamingSettings(
            STREAMING_ATTEMPT_COUNT=self.STREAMING_ATTEMPT_COUNT,
            STREAMING_RETRY_BASE_DELAY=self.STREAMING_RETRY_BASE_DELAY,
            STREAMING_RETRY_MAX_DELAY=self.STREAMING_RETRY_MAX_DELAY,
            QUEUING_POLICY_FACTOR=self.QUEUING_POLICY_FACTOR,
            RAW_SIZE_THRESHOLD=self.RAW_SIZE_THRESHOLD,
            MAX_STREAMING_SIZE=self.MAX_STREAMING_SIZE,
            PERMANENT_FAILURES_TERMINAL=self.PERMANENT_FAILURES_TERMINAL,
        )

    @property
    def logging(self) -> LoggingSettings:
        """Get logging settings."""
        return LoggingSettings(LOG_LEVEL=self.LOG_LEVEL, LOG_FORMAT=self.LOG_FORMAT)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra environment variables
    )


# Global settings instance (singleton pattern)
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get the global settings instance (singleton).

    Returns:
        Settings: Global settings instance, created on first use
    """
    global _settings

    if _settings is None:
        _settings = Settings()

    return _settings


def reload_settings() -> Settings:
    """
    Reload settings (useful for testing).

    Returns:
        Settings: New settings instance
    """
    global _settings
    _settings = Settings()
    return _settings
