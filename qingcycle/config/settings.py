"""
Central configuration management for qingcycle.

This module provides type-safe configuration management using Pydantic,
reading credentials, retry bounds and polling cadence from the environment
or a ``.env`` file.
"""

from typing import Any, Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class QingCloudSettings(BaseSettings):
    """QingCloud API credentials and endpoint."""

    qy_access_key_id: str = Field(default="")
    qy_secret_access_key: str = Field(default="")
    qy_zone: str = Field(default="pek3")
    qy_endpoint: str = Field(default="https://api.qingcloud.com/iaas/")
    qy_request_timeout: float = Field(default=60.0)

    @field_validator("qy_request_timeout")
    @classmethod
    def validate_timeout(cls, v):
        """Validate request timeout is positive."""
        if v <= 0:
            raise ValueError("Request timeout must be positive")
        return v

    @field_validator("qy_endpoint")
    @classmethod
    def validate_endpoint(cls, v):
        """Validate endpoint is an http(s) URL ending with a slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("Endpoint must be an http or https URL")
        return v if v.endswith("/") else f"{v}/"

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)


class LifecycleSettings(BaseSettings):
    """Retry and polling bounds for lifecycle operations."""

    # Busy retry
    retry_max_attempts: int = Field(default=5)
    retry_base_delay: float = Field(default=1.0)
    retry_backoff_factor: float = Field(default=2.0)
    retry_max_delay: float = Field(default=30.0)

    # State polling
    instance_poll_interval: float = Field(default=5.0)
    cache_poll_interval: float = Field(default=5.0)
    transition_timeout: float = Field(default=600.0)  # seconds

    @field_validator("retry_max_attempts")
    @classmethod
    def validate_attempts(cls, v):
        """Validate at least one attempt is made."""
        if v < 1:
            raise ValueError("At least one attempt is required")
        return v

    @field_validator(
        "retry_max_delay",
        "instance_poll_interval",
        "cache_poll_interval",
        "transition_timeout",
    )
    @classmethod
    def validate_positive(cls, v):
        """Validate durations are positive."""
        if v <= 0:
            raise ValueError("Durations must be positive")
        return v

    @field_validator("retry_base_delay")
    @classmethod
    def validate_base_delay(cls, v):
        """Validate base delay is not negative."""
        if v < 0:
            raise ValueError("Base delay must not be negative")
        return v

    @field_validator("retry_backoff_factor")
    @classmethod
    def validate_backoff_factor(cls, v):
        """Validate backoff never shrinks."""
        if v < 1:
            raise ValueError("Backoff factor must be at least 1")
        return v

    def poll_interval_for(self, kind: str) -> float:
        """Get the poll interval for a resource kind."""
        return getattr(self, f"{kind}_poll_interval", self.instance_poll_interval)

    model_config = SettingsConfigDict(env_prefix="QINGCYCLE_", case_sensitive=False)


class MonitoringSettings(BaseSettings):
    """Logging configuration."""

    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")  # json or text
    log_file: Optional[str] = Field(default=None)
    event_log: Optional[str] = Field(default=None)  # JSONL lifecycle events

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        """Validate log format."""
        if v not in ["json", "text"]:
            raise ValueError("Log format must be 'json' or 'text'")
        return v

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)


class AppSettings(BaseSettings):
    """Main application settings."""

    app_name: str = Field(default="qingcycle")
    app_version: str = Field(default="0.1.0")

    # Nested settings
    qingcloud: QingCloudSettings = Field(default_factory=QingCloudSettings)
    lifecycle: LifecycleSettings = Field(default_factory=LifecycleSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    def get_safe_dict(self) -> Dict[str, Any]:
        """Get configuration dict with sensitive values masked."""
        config = self.model_dump()

        def mask_sensitive(obj, path=""):
            """Recursively mask sensitive fields."""
            if isinstance(obj, dict):
                for key, value in obj.items():
                    full_key = f"{path}.{key}" if path else key
                    if any(
                        sensitive in key.lower()
                        for sensitive in ["password", "secret", "key", "token"]
                    ):
                        if value and str(value).strip():
                            obj[key] = "***MASKED***"
                    elif isinstance(value, (dict, list)):
                        mask_sensitive(value, full_key)
            elif isinstance(obj, list):
                for item in obj:
                    if isinstance(item, (dict, list)):
                        mask_sensitive(item, path)

        mask_sensitive(config)
        return config

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )


# Singleton pattern for settings
_settings: Optional[AppSettings] = None


def get_settings() -> AppSettings:
    """Get application settings singleton."""
    global _settings
    if _settings is None:
        _settings = AppSettings()
    return _settings


def reload_settings() -> AppSettings:
    """Force reload of settings (useful for testing)."""
    global _settings
    _settings = None
    return get_settings()
