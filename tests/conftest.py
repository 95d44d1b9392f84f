"""
Shared test fixtures.

Every test gets a fresh application config with a generated master key, a
frozen clock, an in-memory key-value store and a fake Twitter binding that
records what it was asked to do. SQL-backed fixtures use SQLite in-memory.
"""

import time
from datetime import timedelta
from typing import Any, Dict, List, Optional

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from crosspost_core.config import (
    AppConfig,
    ProcessingConfig,
    SecurityConfig,
    reset_config,
    set_config,
)
from crosspost_core.constants import Platform
from crosspost_core.context.principal_context import PrincipalContext
from crosspost_core.db import DatabaseConfig, DatabaseManager, import_all_models
from crosspost_core.exceptions import clear_correlation_id
from crosspost_core.platforms import PlatformCapabilities, PlatformRegistry
from crosspost_core.processing.multi_target_orchestrator import MultiTargetOrchestrator
from crosspost_core.schemas.credential_schemas import CredentialBundle
from crosspost_core.schemas.rate_limit_schemas import EndpointInfo, RateLimitStatus
from crosspost_core.services.access_log_service import AccessLogService
from crosspost_core.services.account_link_service import AccountLinkService
from crosspost_core.services.authorization_service import AuthorizationService
from crosspost_core.services.capability_service import (
    Ed25519CapabilityOracle,
    issue_capability_token,
)
from crosspost_core.services.credential_service import CredentialService
from crosspost_core.services.credential_store import CredentialStoreService
from crosspost_core.services.gateway_service import GatewayService
from crosspost_core.services.rate_limit_service import RateLimitService
from crosspost_core.storage.kv_store import InMemoryKeyValueStore, SqlKeyValueStore
from crosspost_core.utils.encryption_utils import CredentialCipher, generate_master_key
from crosspost_core.utils.logger import reset_logging
from tests.fixtures.factories import FROZEN_NOW


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now=FROZEN_NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeTwitterBinding(PlatformCapabilities):
    """
    In-process stand-in for the Twitter API.

    Failures are scripted by setting attributes: ``action_errors`` maps an
    account id to the exception its action raises, ``refresh_error`` and
    ``revoke_error`` make those calls fail.
    """

    platform = Platform.TWITTER

    def __init__(self, clock: FrozenClock):
        self.clock = clock
        self.actions: List[Dict[str, Any]] = []
        self.refresh_calls: List[CredentialBundle] = []
        self.revoked: List[CredentialBundle] = []
        self.exchanges: List[Dict[str, Any]] = []
        self.action_errors: Dict[str, Exception] = {}
        self.action_delay = 0.0
        self.refresh_error: Optional[Exception] = None
        self.refresh_delay = 0.0
        self.rotate_refresh_token = True
        self.revoke_error: Optional[Exception] = None
        self.rate_limit: Optional[RateLimitStatus] = None
        self.rate_limit_error: Optional[Exception] = None
        self.endpoints = {"post": EndpointInfo(endpoint="/2/tweets")}

    def get_credential(self, authorization: Dict[str, Any]) -> CredentialBundle:
        self.exchanges.append(authorization)
        return CredentialBundle.from_token_response(
            Platform.TWITTER,
            authorization["account_id"],
            {
                "access_token": f"access-{authorization['code']}",
                "refresh_token": f"refresh-{authorization['code']}",
                "expires_in": 7200,
                "scope": "tweet.read tweet.write offline.access",
                "token_type": "bearer",
            },
            self.clock(),
        )

    def refresh(self, credential: CredentialBundle) -> CredentialBundle:
        self.refresh_calls.append(credential)
        if self.refresh_delay:
            time.sleep(self.refresh_delay)
        if self.refresh_error is not None:
            raise self.refresh_error
        count = len(self.refresh_calls)
        return CredentialBundle(
            account_id=credential.account_id,
            platform=Platform.TWITTER,
            access_token=f"refreshed-access-{count}",
            refresh_token=f"rotated-refresh-{count}" if self.rotate_refresh_token else None,
            expires_at=self.clock() + timedelta(hours=2),
        )

    def revoke(self, credential: CredentialBundle) -> None:
        if self.revoke_error is not None:
            raise self.revoke_error
        self.revoked.append(credential)

    def perform_action(
        self, account_id: str, action: str, payload: Dict[str, Any], credential: CredentialBundle
    ) -> Any:
        if self.action_delay:
            time.sleep(self.action_delay)
        error = self.action_errors.get(account_id)
        if error is not None:
            raise error
        self.actions.append(
            {
                "account_id": account_id,
                "action": action,
                "payload": payload,
                "access_token": credential.access_token,
            }
        )
        return {"id": f"tweet-{len(self.actions)}", "text": payload.get("text")}

    def get_rate_limit(self, endpoint: EndpointInfo) -> Optional[RateLimitStatus]:
        if self.rate_limit_error is not None:
            raise self.rate_limit_error
        return self.rate_limit

    def endpoint_for_action(self, action: str) -> Optional[EndpointInfo]:
        return self.endpoints.get(action)

    def get_all_rate_limits(self) -> Dict[str, RateLimitStatus]:
        if self.rate_limit is None:
            return {}
        return {self.rate_limit.endpoint: self.rate_limit}


# ==================== CONFIGURATION ====================


@pytest.fixture(autouse=True)
def app_config():
    """Fresh process-level config per test; thread-local context is cleared afterwards."""
    config = AppConfig(
        environment="test",
        security=SecurityConfig(encryption_key=generate_master_key()),
        processing=ProcessingConfig(pacing_delay_seconds=1.0, invoke_timeout_seconds=5.0),
    )
    set_config(config)
    yield config
    reset_config()
    reset_logging()
    PrincipalContext.clear_current_principal()
    clear_correlation_id()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


# ==================== STORAGE ====================


@pytest.fixture
def store(clock) -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore(clock=clock)


@pytest.fixture
def db_manager():
    """SQLite in-memory database with every model's table created."""
    import_all_models()
    manager = DatabaseManager(
        DatabaseConfig(db_type="sqlite", database=":memory:", development_mode=True)
    )
    manager.create_tables()
    yield manager
    manager.drop_tables()
    manager.close()


@pytest.fixture
def sql_store(db_manager, clock) -> SqlKeyValueStore:
    return SqlKeyValueStore(db_manager, clock=clock)


# ==================== PLATFORMS ====================


@pytest.fixture
def twitter(clock) -> FakeTwitterBinding:
    return FakeTwitterBinding(clock)


@pytest.fixture
def platforms(twitter) -> PlatformRegistry:
    return PlatformRegistry({Platform.TWITTER: twitter})


# ==================== CAPABILITIES ====================


@pytest.fixture
def signing_key() -> Ed25519PrivateKey:
    return Ed25519PrivateKey.generate()


@pytest.fixture
def make_token(signing_key, clock):
    """Issue a capability token for a principal, timestamped at the test clock."""

    def _make_token(principal_id: str, key: Optional[Ed25519PrivateKey] = None, **kwargs):
        kwargs.setdefault("timestamp", clock())
        return issue_capability_token(key or signing_key, principal_id, **kwargs)

    return _make_token


@pytest.fixture
def oracle(clock) -> Ed25519CapabilityOracle:
    return Ed25519CapabilityOracle(clock=clock)


# ==================== SERVICES ====================


@pytest.fixture
def cipher(app_config) -> CredentialCipher:
    return CredentialCipher(app_config.security.master_key_bytes())


@pytest.fixture
def access_log(store, clock) -> AccessLogService:
    return AccessLogService(store, clock=clock)


@pytest.fixture
def credential_store(store, cipher, access_log, clock) -> CredentialStoreService:
    return CredentialStoreService(store, cipher, access_log, clock=clock)


@pytest.fixture
def link_service(store, clock) -> AccountLinkService:
    return AccountLinkService(store, clock=clock)


@pytest.fixture
def authorization_service(store, link_service, clock) -> AuthorizationService:
    return AuthorizationService(store, link_service, clock=clock)


@pytest.fixture
def credential_service(credential_store, platforms, clock) -> CredentialService:
    return CredentialService(credential_store, platforms, clock=clock)


@pytest.fixture
def rate_limit_service(platforms, clock) -> RateLimitService:
    return RateLimitService(platforms, clock=clock)


@pytest.fixture
def sleeps() -> List[float]:
    """Records pacing delays instead of sleeping."""
    return []


@pytest.fixture
def orchestrator(
    link_service, rate_limit_service, credential_service, app_config, sleeps
) -> MultiTargetOrchestrator:
    return MultiTargetOrchestrator(
        link_service,
        rate_limit_service,
        credential_service,
        processing_config=app_config.processing,
        sleep=sleeps.append,
    )


@pytest.fixture
def gateway(store, platforms, oracle, app_config, clock, sleeps) -> GatewayService:
    return GatewayService.create(
        store, platforms, oracle, config=app_config, clock=clock, sleep=sleeps.append
    )
