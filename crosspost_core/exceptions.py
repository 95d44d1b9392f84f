"""
Exception hierarchy, error codes and correlation ids.

Every error raised by the package derives from ``BaseError``. It carries an
``ErrorCode``, the HTTP status for that code, a context dict, and the
thread's correlation id. It logs itself when constructed. Per-target errors
derive from ``PlatformError`` and carry their own recoverability, which the
orchestrator copies into the target's outcome.
"""

import threading
import traceback
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

# utils.logger imports this module, so the logger is imported in _log_error

_thread_local = threading.local()


class ErrorCode(str, Enum):
    """Standardized error codes for API responses."""

    # System errors (1xxx)
    INTERNAL_ERROR = "1000"
    STORAGE_ERROR = "1001"
    CONFIGURATION_ERROR = "1003"
    TIMEOUT_ERROR = "1004"

    # Validation errors (2xxx)
    VALIDATION_FAILED = "2000"
    INVALID_FORMAT = "2001"
    MISSING_REQUIRED = "2002"
    UNSUPPORTED_PLATFORM = "2003"

    # Resource errors (3xxx)
    NOT_FOUND = "3000"
    EXPIRED = "3004"
    RATE_LIMITED = "3005"

    # Authorization errors (4xxx)
    INVALID_CAPABILITY = "4000"
    NOT_AUTHORIZED = "4001"
    UNAUTHORIZED = "4002"
    REAUTH_REQUIRED = "4003"
    FORBIDDEN = "4004"

    # External service errors (5xxx)
    PLATFORM_ERROR = "5000"
    REFRESH_FAILED = "5001"
    INVALID_GRANT = "5002"


# Every ErrorCode member must appear here; tests assert totality.
ERROR_STATUS_CODES: Dict[ErrorCode, int] = {
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.STORAGE_ERROR: 500,
    ErrorCode.CONFIGURATION_ERROR: 500,
    ErrorCode.TIMEOUT_ERROR: 504,
    ErrorCode.VALIDATION_FAILED: 400,
    ErrorCode.INVALID_FORMAT: 400,
    ErrorCode.MISSING_REQUIRED: 400,
    ErrorCode.UNSUPPORTED_PLATFORM: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.EXPIRED: 401,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.INVALID_CAPABILITY: 401,
    ErrorCode.NOT_AUTHORIZED: 403,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.REAUTH_REQUIRED: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.PLATFORM_ERROR: 502,
    ErrorCode.REFRESH_FAILED: 502,
    ErrorCode.INVALID_GRANT: 401,
}


def status_code_for(error_code: ErrorCode) -> int:
    """Return the HTTP status code for an error code."""
    return ERROR_STATUS_CODES[ErrorCode(error_code)]


class BaseError(Exception):
    """
    Root of the package's exceptions.

    ``context`` always holds ``error_id``, plus ``correlation_id`` when one
    is set for the thread and a ``cause`` summary when the error wraps
    another exception.
    """

    recoverable: bool = False

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: Optional[int] = None,
        cause: Optional[Exception] = None,
        **context: Any,
    ):
        """
        Args:
            message: Human-readable error message
            error_code: Standardized error code
            status_code: HTTP status; derived from ``error_code`` when omitted
            cause: Exception being wrapped
            **context: Identifiers worth logging (never secrets)
        """
        super().__init__(message)
        self.message = message
        self.error_code = ErrorCode(error_code)
        self.status_code = status_code if status_code is not None else status_code_for(error_code)
        self.cause = cause
        self.error_id = uuid.uuid4().hex
        self.timestamp = datetime.now(timezone.utc).isoformat()

        self.context: Dict[str, Any] = dict(context, error_id=self.error_id)
        correlation_id = get_correlation_id()
        if correlation_id:
            self.context["correlation_id"] = correlation_id
        if cause is not None:
            self.context["cause"] = {
                "type": type(cause).__name__,
                "message": str(cause),
                "traceback": traceback.format_exception(type(cause), cause, cause.__traceback__),
            }

        self._log_error()

    @property
    def public_context(self) -> Dict[str, Any]:
        """Context without bookkeeping keys or the cause."""
        return {
            key: value
            for key, value in self.context.items()
            if key not in ("cause", "error_id", "correlation_id")
        }

    def _log_error(self) -> None:
        from .utils.logger import get_logger

        extra = {
            "error_id": self.error_id,
            "error_code": self.error_code.value,
            "status_code": self.status_code,
            "error_message": self.message,
            "context": self.public_context,
        }
        if "correlation_id" in self.context:
            extra["correlation_id"] = self.context["correlation_id"]
        if "cause" in self.context:
            extra["cause_type"] = self.context["cause"]["type"]

        label = f"{type(self).__name__} [{self.error_code.value}]: {self.message}"
        logger = get_logger()
        if self.status_code >= 500:
            logger.error(label, extra=extra)
        else:
            logger.warning(label, extra=extra)

    def to_dict(self, include_cause: bool = False) -> Dict[str, Any]:
        """JSON-ready description for API responses."""
        result: Dict[str, Any] = {
            "id": self.error_id,
            "code": self.error_code.value,
            "message": self.message,
            "status_code": self.status_code,
            "recoverable": bool(self.recoverable),
            "timestamp": self.timestamp,
            "context": self.public_context,
        }
        if "correlation_id" in self.context:
            result["correlation_id"] = self.context["correlation_id"]
        if include_cause and "cause" in self.context:
            result["cause"] = {
                "type": self.context["cause"]["type"],
                "message": self.context["cause"]["message"],
            }
        return result

    def add_context(self, **kwargs: Any) -> "BaseError":
        self.context.update(kwargs)
        return self


# ==================== LAYER ERRORS ====================


class StorageError(BaseError):
    """Key-value store or database failure. Reads fail closed, writes surface as fatal."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.STORAGE_ERROR,
        cause: Optional[Exception] = None,
        **context,
    ):
        super().__init__(message, error_code, None, cause, **context)


class ServiceError(BaseError):
    """Service layer errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        operation: Optional[str] = None,
        cause: Optional[Exception] = None,
        **context,
    ):
        if operation:
            context["operation"] = operation
        super().__init__(message, error_code, None, cause, **context)


class ValidationError(BaseError):
    """Malformed input, configuration or platform binding."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        cause: Optional[Exception] = None,
        **context,
    ):
        if field:
            context["field"] = field
        super().__init__(message, error_code, None, cause, **context)


# ==================== REQUEST-FATAL AUTHORIZATION ERRORS ====================


class InvalidCapabilityError(BaseError):
    """Raised when a capability token is malformed, forged, or replayed."""

    def __init__(self, message: str = "Invalid capability token", **kwargs):
        super().__init__(message=message, error_code=ErrorCode.INVALID_CAPABILITY, **kwargs)


class NotAuthorizedError(BaseError):
    """Raised when a verified principal has not authorized use of the system."""

    def __init__(self, message: str = "Principal is not authorized", **kwargs):
        super().__init__(message=message, error_code=ErrorCode.NOT_AUTHORIZED, **kwargs)


# ==================== PER-TARGET ERRORS ====================


class PlatformError(BaseError):
    """
    Classified error raised by platform callbacks.

    Carries an upstream error code and recoverability which the orchestrator
    preserves in the per-target outcome.
    """

    def __init__(
        self,
        message: str = "Platform error",
        error_code: ErrorCode = ErrorCode.PLATFORM_ERROR,
        recoverable: bool = False,
        platform: Optional[str] = None,
        account_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        **context,
    ):
        self.recoverable = recoverable
        self.platform = platform
        self.account_id = account_id
        self.details = details or {}
        if platform:
            context["platform"] = platform
        if account_id:
            context["account_id"] = account_id
        super().__init__(message, error_code, None, cause, **context)


class UnauthorizedError(PlatformError):
    """Raised when a principal has no link to the addressed platform account."""

    def __init__(self, message: str = "No linked account found", **kwargs):
        super().__init__(message, ErrorCode.UNAUTHORIZED, True, **kwargs)


class RateLimitedError(PlatformError):
    """Raised when the advisory rate-limit gate rejects an action."""

    def __init__(self, message: str = "Rate limit reached", **kwargs):
        super().__init__(message, ErrorCode.RATE_LIMITED, True, **kwargs)


class ReauthRequiredError(PlatformError):
    """Raised when a credential is gone for good and the account must be reconnected."""

    def __init__(self, message: str = "Re-authentication required", **kwargs):
        super().__init__(message, ErrorCode.REAUTH_REQUIRED, False, **kwargs)


class InvalidGrantError(PlatformError):
    """Raised by refresh callbacks when the platform rejects the refresh token."""

    def __init__(self, message: str = "Refresh token rejected by platform", **kwargs):
        super().__init__(message, ErrorCode.INVALID_GRANT, False, **kwargs)


class CredentialRefreshError(PlatformError):
    """Raised when a refresh failed for a reason that may go away on retry."""

    def __init__(self, message: str = "Credential refresh failed", **kwargs):
        super().__init__(message, ErrorCode.REFRESH_FAILED, True, **kwargs)


class OperationTimeoutError(PlatformError):
    """Raised when a platform call did not finish within the invoke timeout."""

    def __init__(self, message: str = "Operation timed out", **kwargs):
        super().__init__(message, ErrorCode.TIMEOUT_ERROR, True, **kwargs)


# ==================== CREDENTIAL STORAGE ====================


class CredentialNotFoundError(BaseError):
    """Raised when no bundle is stored for (platform, account_id)."""

    def __init__(self, message: str = "Credential not found", **kwargs):
        super().__init__(message=message, error_code=ErrorCode.NOT_FOUND, **kwargs)


class CredentialIntegrityError(StorageError):
    """Raised when stored ciphertext fails authentication."""

    def __init__(self, message: str = "Credential ciphertext failed authentication", **kwargs):
        super().__init__(message, ErrorCode.STORAGE_ERROR, **kwargs)


# ==================== CORRELATION IDS ====================


def set_correlation_id(correlation_id: str) -> None:
    _thread_local.correlation_id = correlation_id


def get_correlation_id() -> Optional[str]:
    return getattr(_thread_local, "correlation_id", None)


def clear_correlation_id() -> None:
    if hasattr(_thread_local, "correlation_id"):
        delattr(_thread_local, "correlation_id")
