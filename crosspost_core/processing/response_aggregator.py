"""
Reduce per-target outcomes to one classification and HTTP status.
"""

from typing import Sequence

from ..constants import MULTI_STATUS_CODE, ResponseClassification
from ..exceptions import ErrorCode, status_code_for
from ..schemas.operation_schemas import (
    AggregateResult,
    ErrorDetail,
    MultiTargetResult,
    SuccessDetail,
)


class ResponseAggregator:
    """
    Classification rules:

    - no errors (including an empty batch): ``ok`` / 200
    - only errors: ``failed``, status of the FIRST error in input order
    - both: ``partial`` / 207
    """

    OK_STATUS = 200

    @staticmethod
    def status_code_for(error_code: ErrorCode) -> int:
        """Total mapping from every ErrorCode to an HTTP status."""
        return status_code_for(error_code)

    def compose(
        self,
        successes: Sequence[SuccessDetail],
        errors: Sequence[ErrorDetail],
        cancelled: bool = False,
    ) -> AggregateResult:
        successes = list(successes)
        errors = list(errors)

        if not errors:
            classification = ResponseClassification.OK
            status_code = self.OK_STATUS
            error_code = None
        elif not successes:
            classification = ResponseClassification.FAILED
            error_code = errors[0].code
            status_code = self.status_code_for(error_code)
        else:
            classification = ResponseClassification.PARTIAL
            status_code = MULTI_STATUS_CODE
            error_code = None

        return AggregateResult(
            classification=classification,
            status_code=status_code,
            error_code=error_code,
            successes=successes,
            errors=errors,
            cancelled=cancelled,
        )

    def compose_result(self, result: MultiTargetResult) -> AggregateResult:
        return self.compose(result.successes, result.errors, cancelled=result.cancelled)
