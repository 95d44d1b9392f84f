"""
Pydantic schemas for platform credentials and their access log.

A ``CredentialBundle`` is immutable: refresh produces a new bundle which
replaces the stored one wholesale.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..constants import AccessOperation, AccessOutcome, Platform


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CredentialBundle(BaseModel):
    """OAuth material for one platform account."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True, extra="forbid")

    account_id: str = Field(..., min_length=1, description="Platform account identifier")
    platform: Platform = Field(..., description="Platform the account belongs to")
    access_token: str = Field(..., min_length=1, repr=False, description="OAuth access token")
    refresh_token: Optional[str] = Field(None, repr=False, description="OAuth refresh token")
    expires_at: Optional[datetime] = Field(None, description="Access token expiry (UTC)")
    scope: List[str] = Field(default_factory=list, description="Granted scopes")
    token_type: str = Field(default="Bearer", description="Token type")

    @field_validator("expires_at")
    @classmethod
    def normalize_expiry(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    @field_validator("token_type")
    @classmethod
    def validate_token_type(cls, v: str) -> str:
        """Validate token type is a known value."""
        allowed_types = {"bearer", "mac"}
        if v.lower() not in allowed_types:
            raise ValueError(f"Token type must be one of: {allowed_types}")
        return v

    @property
    def has_refresh_token(self) -> bool:
        return bool(self.refresh_token)

    def is_expired(self, now: datetime, skew_seconds: float = 0.0) -> bool:
        """True when the access token expires within skew_seconds of now."""
        if self.expires_at is None:
            return False
        return self.expires_at <= _as_utc(now) + timedelta(seconds=skew_seconds)

    @classmethod
    def from_token_response(
        cls,
        platform: Platform,
        account_id: str,
        response: Dict[str, Any],
        now: datetime,
    ) -> "CredentialBundle":
        """
        Build a bundle from an OAuth 2.0 token endpoint response.

        ``expires_in`` is relative, so the caller supplies the time the
        response was received.
        """
        expires_in = response.get("expires_in")
        scope = response.get("scope") or []
        if isinstance(scope, str):
            scope = scope.split()
        return cls(
            account_id=account_id,
            platform=platform,
            access_token=response["access_token"],
            refresh_token=response.get("refresh_token"),
            expires_at=_as_utc(now) + timedelta(seconds=int(expires_in)) if expires_in else None,
            scope=scope,
            token_type=response.get("token_type", "Bearer"),
        )


class AccessLogEntry(BaseModel):
    """Append-only audit record of a credential store operation."""

    model_config = ConfigDict(frozen=True)

    account_id: str
    platform: Platform
    operation: AccessOperation
    timestamp: datetime
    outcome: AccessOutcome
    principal_id: Optional[str] = None
    detail: Optional[str] = None
