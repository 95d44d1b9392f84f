"""Pydantic schemas for records and request-scoped results."""

from .auth_schemas import AuthorizationRecord, LinkedAccount, UnauthorizeResult
from .credential_schemas import AccessLogEntry, CredentialBundle
from .operation_schemas import (
    AggregateResult,
    ErrorDetail,
    MultiTargetResult,
    OperationTarget,
    SuccessDetail,
)
from .rate_limit_schemas import EndpointInfo, RateLimitStatus

__all__ = [
    "AccessLogEntry",
    "AggregateResult",
    "AuthorizationRecord",
    "CredentialBundle",
    "EndpointInfo",
    "ErrorDetail",
    "LinkedAccount",
    "MultiTargetResult",
    "OperationTarget",
    "RateLimitStatus",
    "SuccessDetail",
    "UnauthorizeResult",
]
