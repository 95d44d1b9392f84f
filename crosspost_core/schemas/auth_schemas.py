"""
Schemas for principal authorization and account links.
"""

from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field

from ..constants import Platform
from .operation_schemas import ErrorDetail


class AuthorizationRecord(BaseModel):
    """Marks a principal as allowed to use the system."""

    principal_id: str = Field(..., min_length=1)
    authorized: bool = True
    authorized_at: datetime


class LinkedAccount(BaseModel):
    """A platform account a principal may act as. Equality is by pair."""

    model_config = ConfigDict(frozen=True)

    platform: Platform
    account_id: str = Field(..., min_length=1)


class UnauthorizeResult(BaseModel):
    """
    Outcome of tearing down a principal.

    ``errors`` lists every link whose credential revoke or unlink failed.
    The authorization record is removed regardless.
    """

    principal_id: str
    unlinked: List[LinkedAccount] = Field(default_factory=list)
    errors: List[ErrorDetail] = Field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.errors
