"""
Process-wide settings for the crosspost core.

Every section is a Pydantic model whose defaults come from the environment
(see ``EnvironmentVariable``). Services read the active ``AppConfig``
through ``get_config()``. Tests install their own with ``set_config()``.
"""

import base64
import binascii
import os
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator

from .constants import EnvironmentVariable, LogLevel


def _env(name: EnvironmentVariable, default: str) -> str:
    return os.getenv(name.value, default)


def _env_float(name: EnvironmentVariable, default: float) -> float:
    value = os.getenv(name.value)
    return float(value) if value else default


class DatabaseSettings(BaseModel):
    """SQL store location and pool sizing (``DATABASE_URL``)."""

    connection_string: str = Field(
        default_factory=lambda: _env(EnvironmentVariable.DATABASE_URL, "sqlite:///./crosspost.db"),
        description="SQLAlchemy URL of the key-value store database",
    )
    pool_size: int = Field(default=5, description="Pooled connections kept open")
    max_overflow: int = Field(default=10, description="Connections allowed beyond pool_size")
    pool_timeout: int = Field(default=30, description="Seconds to wait for a free connection")
    echo: bool = Field(default=False, description="Log emitted SQL")


class LoggingConfig(BaseModel):
    """Log level and the optional log shipping queue."""

    level: str = Field(
        default_factory=lambda: _env(EnvironmentVariable.LOG_LEVEL, LogLevel.INFO.value),
        description="Threshold for the service logger",
    )
    queue_connection_string: str = Field(
        default_factory=lambda: _env(EnvironmentVariable.AZURE_STORAGE_CONNECTION, ""),
        description="Azure Storage connection string used for log shipping",
    )
    queue_name: str = Field(default="crosspost-logs", description="Queue receiving log entries")

    @field_validator("level")
    def normalize_level(cls, v: str) -> str:
        level = v.upper()
        allowed = sorted(member.value for member in LogLevel)
        if level not in allowed:
            raise ValueError(f"Unknown log level {v!r}; expected one of {allowed}")
        return level


class FeatureFlags(BaseModel):
    """Switches for optional behavior."""

    enable_logs_queue: bool = Field(
        default=False, description="Ship structured logs to an Azure Storage Queue"
    )
    enable_operation_context: bool = Field(
        default=True, description="Wrap decorated calls in ENTER/EXIT operation logging"
    )
    enable_access_log: bool = Field(
        default=True, description="Append credential access log entries"
    )


class SecurityConfig(BaseModel):
    """Credential encryption key and capability token freshness."""

    encryption_key: Optional[str] = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.ENCRYPTION_KEY.value),
        description="Master credential encryption key (base64 encoded, 32 bytes)",
    )
    capability_max_age_seconds: float = Field(
        default_factory=lambda: _env_float(EnvironmentVariable.CAPABILITY_MAX_AGE, 300.0),
        description="Freshness window for capability token timestamps",
    )
    capability_max_clock_skew_seconds: float = Field(
        default=30.0, description="Tolerated future skew for capability timestamps"
    )

    @field_validator("encryption_key")
    def validate_encryption_key(cls, v: Optional[str]) -> Optional[str]:
        """The master key must be base64 for exactly 32 bytes."""
        if v is None:
            return v
        try:
            raw = base64.b64decode(v, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError("Encryption key must be valid base64") from e
        if len(raw) != 32:
            raise ValueError("Encryption key must decode to 32 bytes")
        return v

    def master_key_bytes(self) -> Optional[bytes]:
        if self.encryption_key is None:
            return None
        return base64.b64decode(self.encryption_key)


class CredentialConfig(BaseModel):
    """Credential lifecycle configuration."""

    refresh_skew_seconds: float = Field(
        default=60.0, description="Treat credentials as expired this many seconds early"
    )
    cache_ttl_seconds: float = Field(
        default=300.0, description="Decrypted credential cache time-to-live"
    )
    cache_max_entries: int = Field(default=1000, description="Maximum cached credentials")


class ProcessingConfig(BaseModel):
    """Configuration for multi-target processing."""

    pacing_delay_seconds: float = Field(
        default_factory=lambda: _env_float(EnvironmentVariable.PACING_DELAY, 1.0),
        description="Default delay applied after every non-final target",
    )
    platform_pacing_seconds: Dict[str, float] = Field(
        default_factory=dict, description="Per-platform pacing overrides"
    )
    invoke_timeout_seconds: Optional[float] = Field(
        default=30.0, description="Timeout for a single platform action (None disables)"
    )

    def pacing_for(self, platform: str) -> float:
        return self.platform_pacing_seconds.get(platform, self.pacing_delay_seconds)


class AppConfig(BaseModel):
    """Every settings section, read once per process."""

    environment: str = Field(
        default_factory=lambda: _env(EnvironmentVariable.APP_ENV, "development"),
        description="Deployment name (development, test, production)",
    )

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    features: FeatureFlags = Field(default_factory=FeatureFlags)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    credentials: CredentialConfig = Field(default_factory=CredentialConfig)
    processing: ProcessingConfig = Field(default_factory=ProcessingConfig)


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """The active configuration, built from the environment on first use."""
    global _config
    if _config is None:
        _config = AppConfig()
    return _config


def set_config(config: AppConfig) -> None:
    global _config
    _config = config


def reset_config() -> None:
    """Drop the active configuration; the next ``get_config()`` rereads the environment."""
    global _config
    _config = None
