"""
Schemas describing platform rate-limit windows.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EndpointInfo(BaseModel):
    """Platform endpoint an action is metered against."""

    model_config = ConfigDict(frozen=True)

    endpoint: str = Field(..., min_length=1)
    version: Optional[str] = None


class RateLimitStatus(BaseModel):
    """Window reported by a platform for one endpoint."""

    endpoint: str
    limit: int = Field(..., ge=0)
    remaining: int
    reset_at: datetime

    @field_validator("reset_at")
    @classmethod
    def normalize_reset(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def is_obsolete(self, now: datetime) -> bool:
        """True once the window has reset."""
        return self.reset_at <= now

    def is_exhausted(self, now: datetime) -> bool:
        """True while no calls remain and the window has not reset."""
        return self.remaining <= 0 and not self.is_obsolete(now)
