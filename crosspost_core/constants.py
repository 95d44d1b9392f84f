"""
Constants and enums for the crosspost core.

This module centralizes all magic strings and constants used throughout
the package to ensure consistency and maintainability.
"""

from enum import Enum


class Platform(str, Enum):
    """Supported external platforms (closed set)."""

    TWITTER = "twitter"


class AccessOperation(str, Enum):
    """Operations recorded in the credential access log."""

    READ = "read"
    WRITE = "write"
    DELETE = "delete"


class AccessOutcome(str, Enum):
    """Outcome values recorded in the credential access log."""

    SUCCESS = "success"
    NOT_FOUND = "not_found"
    FAILURE = "failure"


class TargetState(str, Enum):
    """Per-target states of a multi-target operation."""

    PENDING = "pending"
    ACCESS_CHECKED = "access_checked"
    RATE_CHECKED = "rate_checked"
    EXECUTED = "executed"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ResponseClassification(str, Enum):
    """Aggregate classification of a multi-target operation."""

    OK = "ok"
    PARTIAL = "partial"
    FAILED = "failed"


class KeyPrefix(str, Enum):
    """Key-value namespaces."""

    AUTH = "auth"
    LINKS = "links"
    LINK_REFS = "link_refs"
    CREDENTIALS = "credentials"
    ACCESS_LOG = "access_log"


class LogLevel(str, Enum):
    """Standard logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EnvironmentVariable(str, Enum):
    """Standard environment variable names."""

    AZURE_STORAGE_CONNECTION = "AzureWebJobsStorage"
    DATABASE_URL = "DATABASE_URL"
    APP_ENV = "APP_ENV"
    LOG_LEVEL = "LOG_LEVEL"
    ENCRYPTION_KEY = "ENCRYPTION_KEY"
    CAPABILITY_MAX_AGE = "CAPABILITY_MAX_AGE_SECONDS"
    PACING_DELAY = "PACING_DELAY_SECONDS"


# Statuses returned by AuthorizationRegistry.status
NOT_AUTHORIZED_STATUS = -1

# HTTP status used when a batch contains both successes and failures
MULTI_STATUS_CODE = 207
