"""Service layer for authorization, linking and credentials."""

from .access_log_service import AccessLogService
from .account_link_service import AccountLinkService, UnlinkResult
from .authorization_service import AuthorizationService
from .base_service import BaseService
from .capability_service import (
    CapabilityVerifier,
    Ed25519CapabilityOracle,
    SignatureOracle,
    VerifiedCapability,
    issue_capability_token,
)
from .credential_cache import CredentialCache
from .credential_service import CredentialService
from .credential_store import CredentialStoreService
from .rate_limit_service import RateLimitService

__all__ = [
    "AccessLogService",
    "AccountLinkService",
    "UnlinkResult",
    "AuthorizationService",
    "BaseService",
    "CapabilityVerifier",
    "Ed25519CapabilityOracle",
    "SignatureOracle",
    "VerifiedCapability",
    "issue_capability_token",
    "CredentialCache",
    "CredentialService",
    "CredentialStoreService",
    "RateLimitService",
]
