"""
Public entry points.

Every call starts from a capability token. The token is verified first and
authorization is checked before any link, credential or platform call is
touched; both failures short-circuit the whole request.
"""

import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from ..config import AppConfig, get_config
from ..constants import Platform
from ..context.operation_context import operation
from ..context.principal_context import principal_context
from ..exceptions import (
    BaseError,
    ErrorCode,
    NotAuthorizedError,
    ValidationError,
    status_code_for,
)
from ..platforms.registry import PlatformRegistry
from ..processing.multi_target_orchestrator import Invoke, MultiTargetOrchestrator, to_targets
from ..processing.response_aggregator import ResponseAggregator
from ..schemas.auth_schemas import AuthorizationRecord, LinkedAccount, UnauthorizeResult
from ..schemas.credential_schemas import CredentialBundle
from ..schemas.operation_schemas import AggregateResult, ErrorDetail, OperationTarget
from ..storage.kv_store import KeyValueStore
from ..utils.encryption_utils import CredentialCipher
from ..utils.logger import get_logger
from .access_log_service import AccessLogService
from .account_link_service import AccountLinkService, UnlinkResult
from .authorization_service import AuthorizationService
from .capability_service import CapabilityVerifier, SignatureOracle
from .credential_cache import CredentialCache
from .credential_service import CredentialService
from .credential_store import CredentialStoreService
from .rate_limit_service import RateLimitService


class GatewayService:
    """Facade over verification, authorization, linking and multi-target operations."""

    def __init__(
        self,
        verifier: CapabilityVerifier,
        authorization_service: AuthorizationService,
        link_service: AccountLinkService,
        credential_service: CredentialService,
        orchestrator: MultiTargetOrchestrator,
        platforms: PlatformRegistry,
        aggregator: Optional[ResponseAggregator] = None,
    ):
        self.verifier = verifier
        self.authorization_service = authorization_service
        self.link_service = link_service
        self.credential_service = credential_service
        self.orchestrator = orchestrator
        self.platforms = platforms
        self.aggregator = aggregator or ResponseAggregator()
        self.logger = get_logger()

    @classmethod
    def create(
        cls,
        store: KeyValueStore,
        platforms: PlatformRegistry,
        oracle: SignatureOracle,
        config: Optional[AppConfig] = None,
        cache: Optional[CredentialCache] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> "GatewayService":
        """
        Wire every component over one key-value store.

        The cache, if given, must already be started; its lifecycle stays
        with the caller.
        """
        config = config or get_config()

        link_service = AccountLinkService(store, clock=clock)
        authorization_service = AuthorizationService(store, link_service, clock=clock)
        access_log = AccessLogService(store, enabled=config.features.enable_access_log, clock=clock)
        credential_store = CredentialStoreService(
            store,
            CredentialCipher(config.security.master_key_bytes()),
            access_log,
            clock=clock,
        )
        credential_service = CredentialService(
            credential_store,
            platforms,
            cache=cache,
            refresh_skew_seconds=config.credentials.refresh_skew_seconds,
            clock=clock,
        )
        rate_limit_service = RateLimitService(platforms, clock=clock)
        orchestrator_kwargs: Dict[str, Any] = {"processing_config": config.processing}
        if sleep is not None:
            orchestrator_kwargs["sleep"] = sleep
        orchestrator = MultiTargetOrchestrator(
            link_service, rate_limit_service, credential_service, **orchestrator_kwargs
        )

        return cls(
            verifier=CapabilityVerifier(oracle),
            authorization_service=authorization_service,
            link_service=link_service,
            credential_service=credential_service,
            orchestrator=orchestrator,
            platforms=platforms,
        )

    # ==================== GATES ====================

    def _require_authorized(self, principal_id: str) -> None:
        if not self.authorization_service.is_authorized(principal_id):
            raise NotAuthorizedError(
                "Principal has not authorized the application", principal_id=principal_id
            )

    # ==================== AUTHORIZATION ====================

    @operation()
    def authorize(self, token: str) -> AuthorizationRecord:
        principal_id = self.verifier.verify(token)
        with principal_context(principal_id):
            return self.authorization_service.authorize(principal_id)

    @operation()
    def unauthorize(self, token: str) -> UnauthorizeResult:
        """
        Tear down every link (revoking credentials nobody else references),
        then remove the authorization record.

        Per-link failures are collected into the result rather than aborting
        the teardown.
        """
        principal_id = self.verifier.verify(token)
        with principal_context(principal_id):
            result = UnauthorizeResult(principal_id=principal_id)

            for account in self.link_service.list_links(principal_id):
                try:
                    self._unlink(principal_id, account.platform, account.account_id)
                    result.unlinked.append(account)
                except BaseError as e:
                    result.errors.append(
                        ErrorDetail(
                            platform=account.platform,
                            account_id=account.account_id,
                            code=e.error_code,
                            message=e.message,
                            recoverable=bool(e.recoverable),
                            status_code=e.status_code,
                        )
                    )
                except Exception as e:
                    self.logger.error(
                        "Unexpected error while unlinking account",
                        extra={
                            "principal_id": principal_id,
                            "platform": account.platform.value,
                            "account_id": account.account_id,
                            "error_type": type(e).__name__,
                            "error_details": str(e),
                        },
                    )
                    result.errors.append(
                        ErrorDetail(
                            platform=account.platform,
                            account_id=account.account_id,
                            code=ErrorCode.INTERNAL_ERROR,
                            message=str(e) or type(e).__name__,
                            recoverable=False,
                            status_code=status_code_for(ErrorCode.INTERNAL_ERROR),
                        )
                    )

            self.authorization_service.unauthorize(principal_id)

            if result.errors:
                self.logger.warning(
                    "Principal unauthorized with teardown errors",
                    extra={
                        "principal_id": principal_id,
                        "unlinked": len(result.unlinked),
                        "failed": len(result.errors),
                    },
                )
            return result

    def status(self, token: str) -> int:
        """-1 when not authorized, otherwise the number of linked accounts."""
        principal_id = self.verifier.verify(token)
        with principal_context(principal_id):
            return self.authorization_service.status(principal_id)

    # ==================== LINKS ====================

    @operation()
    def link(self, token: str, platform: Platform, account_id: str) -> LinkedAccount:
        principal_id = self.verifier.verify(token)
        with principal_context(principal_id):
            self._require_authorized(principal_id)
            self.link_service.link(principal_id, platform, account_id)
            return LinkedAccount(platform=platform, account_id=account_id)

    @operation()
    def connect_account(self, token: str, bundle: CredentialBundle) -> LinkedAccount:
        """Store a freshly obtained credential and link its account to the caller."""
        principal_id = self.verifier.verify(token)
        with principal_context(principal_id):
            self._require_authorized(principal_id)
            return self._connect(principal_id, bundle)

    def _connect(self, principal_id: str, bundle: CredentialBundle) -> LinkedAccount:
        self.credential_service.save_credential(bundle)
        self.link_service.link(principal_id, bundle.platform, bundle.account_id)
        return LinkedAccount(platform=bundle.platform, account_id=bundle.account_id)

    @operation()
    def complete_oauth(
        self, token: str, platform: Platform, authorization: Dict[str, Any]
    ) -> LinkedAccount:
        """Finish a platform OAuth exchange and connect the resulting account."""
        principal_id = self.verifier.verify(token)
        with principal_context(principal_id):
            self._require_authorized(principal_id)
            bundle = self.platforms.get(Platform(platform)).get_credential(authorization)
            return self._connect(principal_id, bundle)

    @operation()
    def unlink(self, token: str, platform: Platform, account_id: str) -> UnlinkResult:
        principal_id = self.verifier.verify(token)
        with principal_context(principal_id):
            return self._unlink(principal_id, Platform(platform), account_id)

    def _unlink(self, principal_id: str, platform: Platform, account_id: str) -> UnlinkResult:
        result = self.link_service.unlink(principal_id, platform, account_id)
        if result.removed and result.remaining_references == 0:
            # Last reference gone: the credential has no owner left
            self.credential_service.revoke_credential(platform, account_id)
        return result

    def list_links(self, token: str) -> List[LinkedAccount]:
        principal_id = self.verifier.verify(token)
        with principal_context(principal_id):
            return self.link_service.list_links(principal_id)

    # ==================== OPERATIONS ====================

    def _default_invoke(self, action: str) -> Invoke:
        def invoke(target: OperationTarget, credential: CredentialBundle) -> Any:
            binding = self.platforms.get(target.platform)
            return binding.perform_action(target.account_id, action, target.payload, credential)

        return invoke

    @operation()
    def perform_multi_target(
        self,
        token: str,
        action: str,
        targets: Sequence[Any],
        invoke: Optional[Invoke] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> AggregateResult:
        """
        Run one action against many accounts and aggregate the outcomes.

        Raises:
            InvalidCapabilityError: Token rejected (no target is touched)
            NotAuthorizedError: Principal not authorized (no target is touched)
            ValidationError: Targets are malformed
        """
        principal_id = self.verifier.verify(token)
        with principal_context(principal_id):
            self._require_authorized(principal_id)

            try:
                parsed_targets = to_targets(targets)
            except PydanticValidationError as e:
                raise ValidationError(
                    "Invalid operation targets",
                    field="targets",
                    error_code=ErrorCode.INVALID_FORMAT,
                    cause=e,
                ) from e

            result = self.orchestrator.process(
                principal_id,
                action,
                parsed_targets,
                invoke or self._default_invoke(action),
                cancel_event=cancel_event,
            )
            return self.aggregator.compose_result(result)
