"""
Sequential fan-out of one action over many platform accounts.

Each target moves through ``PENDING -> ACCESS_CHECKED -> RATE_CHECKED ->
EXECUTED -> SUCCEEDED|FAILED``. A failing target is recorded and the batch
moves on; only cancellation stops it early.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Any, Callable, List, Optional, Sequence

from ..config import ProcessingConfig, get_config
from ..constants import TargetState
from ..context.operation_context import operation
from ..context.principal_context import PrincipalContext
from ..exceptions import (
    BaseError,
    ErrorCode,
    OperationTimeoutError,
    RateLimitedError,
    UnauthorizedError,
    clear_correlation_id,
    get_correlation_id,
    set_correlation_id,
    status_code_for,
)
from ..schemas.credential_schemas import CredentialBundle
from ..schemas.operation_schemas import (
    ErrorDetail,
    MultiTargetResult,
    OperationTarget,
    SuccessDetail,
)
from ..services.account_link_service import AccountLinkService
from ..services.credential_service import CredentialService
from ..services.rate_limit_service import RateLimitService
from ..utils.logger import get_logger

Invoke = Callable[[OperationTarget, CredentialBundle], Any]


class MultiTargetOrchestrator:
    """Runs access check, rate check and action for each target in input order."""

    def __init__(
        self,
        link_service: AccountLinkService,
        rate_limit_service: RateLimitService,
        credential_service: CredentialService,
        processing_config: Optional[ProcessingConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.link_service = link_service
        self.rate_limit_service = rate_limit_service
        self.credential_service = credential_service
        self.processing_config = processing_config or get_config().processing
        self.sleep = sleep
        self.logger = get_logger()

    @operation()
    def process(
        self,
        principal_id: str,
        action: str,
        targets: Sequence[OperationTarget],
        invoke: Invoke,
        cancel_event: Optional[threading.Event] = None,
    ) -> MultiTargetResult:
        """
        Process every target, collecting outcomes without aborting on failure.

        Args:
            principal_id: Verified, authorized principal driving the request
            action: Action name, used for rate limiting
            targets: Targets in the order they must be processed
            invoke: ``invoke(target, credential)`` performing the platform call
            cancel_event: When set, targets not yet started are abandoned

        Returns:
            Successes and errors, each in input order
        """
        result = MultiTargetResult()
        total = len(targets)

        for index, target in enumerate(targets):
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                self.logger.warning(
                    "Multi-target operation cancelled",
                    extra={
                        "principal_id": principal_id,
                        "action": action,
                        "processed": index,
                        "abandoned": total - index,
                    },
                )
                break

            self._process_target(principal_id, action, target, invoke, result)

            # A cancelled batch ends at the top of the next iteration without waiting
            cancelled = cancel_event is not None and cancel_event.is_set()
            if index < total - 1 and not cancelled:
                delay = self.processing_config.pacing_for(target.platform.value)
                if delay > 0:
                    self.sleep(delay)

        self.logger.info(
            "Multi-target operation finished",
            extra={
                "principal_id": principal_id,
                "action": action,
                "targets": total,
                "succeeded": len(result.successes),
                "failed": len(result.errors),
                "cancelled": result.cancelled,
            },
        )
        return result

    def _process_target(
        self,
        principal_id: str,
        action: str,
        target: OperationTarget,
        invoke: Invoke,
        result: MultiTargetResult,
    ) -> None:
        state = TargetState.PENDING
        platform = target.platform.value
        try:
            if not self.link_service.has_link(principal_id, target.platform, target.account_id):
                raise UnauthorizedError(
                    f"No connected {platform} account found for user ID {target.account_id}",
                    platform=platform,
                    account_id=target.account_id,
                )
            state = TargetState.ACCESS_CHECKED

            if not self.rate_limit_service.can_perform_action(target.platform, action):
                raise RateLimitedError(
                    f"Rate limit reached for {platform}. Please try again later.",
                    platform=platform,
                    account_id=target.account_id,
                )
            state = TargetState.RATE_CHECKED

            outcome = self._execute(target, invoke)
            state = TargetState.EXECUTED

            result.successes.append(
                SuccessDetail(
                    platform=target.platform, account_id=target.account_id, result=outcome
                )
            )
            state = TargetState.SUCCEEDED

        except BaseError as e:
            result.errors.append(self._classified_error(target, e))
            state = TargetState.FAILED
        except Exception as e:
            result.errors.append(self._unclassified_error(target, e))
            state = TargetState.FAILED

        self.logger.debug(
            "Target processed",
            extra={"platform": platform, "account_id": target.account_id, "state": state.value},
        )

    def _run(self, target: OperationTarget, invoke: Invoke) -> Any:
        credential = self.credential_service.get_valid_credential(
            target.account_id, target.platform
        )
        return invoke(target, credential)

    def _execute(self, target: OperationTarget, invoke: Invoke) -> Any:
        timeout = self.processing_config.invoke_timeout_seconds
        if timeout is None:
            return self._run(target, invoke)

        principal_id = PrincipalContext.get_current_principal_id()
        correlation_id = get_correlation_id()

        def run_with_context():
            # Thread-local context does not cross into the worker thread
            if principal_id:
                PrincipalContext.set_current_principal(principal_id)
            if correlation_id:
                set_correlation_id(correlation_id)
            try:
                return self._run(target, invoke)
            finally:
                PrincipalContext.clear_current_principal()
                clear_correlation_id()

        # A fresh worker per target: a timed-out call keeps running in the
        # background and must not block the next target.
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="crosspost-target")
        try:
            future = executor.submit(run_with_context)
            try:
                return future.result(timeout=timeout)
            except FuturesTimeoutError as e:
                raise OperationTimeoutError(
                    f"{target.platform.value} call timed out after {timeout}s",
                    platform=target.platform.value,
                    account_id=target.account_id,
                    cause=e,
                ) from e
        finally:
            executor.shutdown(wait=False)

    @staticmethod
    def _classified_error(target: OperationTarget, error: BaseError) -> ErrorDetail:
        return ErrorDetail(
            platform=target.platform,
            account_id=target.account_id,
            code=error.error_code,
            message=error.message,
            recoverable=bool(error.recoverable),
            status_code=error.status_code,
            details=dict(getattr(error, "details", {}) or {}),
        )

    def _unclassified_error(self, target: OperationTarget, error: Exception) -> ErrorDetail:
        self.logger.error(
            "Unclassified error while processing target",
            extra={
                "platform": target.platform.value,
                "account_id": target.account_id,
                "error_type": type(error).__name__,
                "error_details": str(error),
            },
        )
        return ErrorDetail(
            platform=target.platform,
            account_id=target.account_id,
            code=ErrorCode.PLATFORM_ERROR,
            message=str(error) or "Unknown error",
            recoverable=False,
            status_code=status_code_for(ErrorCode.PLATFORM_ERROR),
            details={"error_type": type(error).__name__},
        )


def to_targets(raw_targets: Sequence[Any]) -> List[OperationTarget]:
    """Accept OperationTarget instances or plain mappings."""
    return [
        target if isinstance(target, OperationTarget) else OperationTarget.model_validate(target)
        for target in raw_targets
    ]
