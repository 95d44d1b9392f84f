"""
Request-scoped schemas for multi-target operations.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..constants import Platform, ResponseClassification
from ..exceptions import ErrorCode


class OperationTarget(BaseModel):
    """One (platform, account_id) pair addressed by a request."""

    model_config = ConfigDict(frozen=True)

    platform: Platform
    account_id: str = Field(..., min_length=1)
    payload: Dict[str, Any] = Field(default_factory=dict)


class SuccessDetail(BaseModel):
    """Outcome of a target whose action completed."""

    platform: Platform
    account_id: str
    result: Any = None


class ErrorDetail(BaseModel):
    """Outcome of a target that failed, with its classified error."""

    platform: Platform
    account_id: str
    code: ErrorCode
    message: str
    recoverable: bool
    status_code: int
    details: Dict[str, Any] = Field(default_factory=dict)


class MultiTargetResult(BaseModel):
    """Ordered outcomes of one orchestrator pass."""

    successes: List[SuccessDetail] = Field(default_factory=list)
    errors: List[ErrorDetail] = Field(default_factory=list)
    cancelled: bool = False

    @property
    def processed(self) -> int:
        return len(self.successes) + len(self.errors)


class AggregateResult(BaseModel):
    """Single classification and status code for a whole batch."""

    classification: ResponseClassification
    status_code: int
    error_code: Optional[ErrorCode] = None
    successes: List[SuccessDetail] = Field(default_factory=list)
    errors: List[ErrorDetail] = Field(default_factory=list)
    cancelled: bool = False
