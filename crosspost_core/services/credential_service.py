"""
Credential lifecycle: serve valid credentials, refresh on expiry, and
delete credentials that can never work again.

Refresh is single-flighted per (platform, account_id). Two requests racing
on the same expired credential would otherwise both refresh upstream, and a
platform that rotates refresh tokens invalidates the first result when the
second succeeds.
"""

from datetime import datetime
from typing import Callable, Optional

from ..config import get_config
from ..constants import Platform
from ..context.operation_context import operation
from ..exceptions import (
    CredentialNotFoundError,
    CredentialRefreshError,
    ErrorCode,
    PlatformError,
    ReauthRequiredError,
)
from ..platforms.registry import PlatformRegistry
from ..schemas.credential_schemas import CredentialBundle
from ..utils.keyed_lock import KeyedLock
from ..utils.logger import get_logger
from .credential_cache import CredentialCache
from .credential_store import CredentialStoreService


class CredentialService:
    """
    Composes the encrypted store with platform refresh and revoke.

    Refresh locks are process-local; multi-process deployments get the same
    guarantee as long as each account is served by one process at a time.
    """

    def __init__(
        self,
        credential_store: CredentialStoreService,
        platforms: PlatformRegistry,
        cache: Optional[CredentialCache] = None,
        refresh_skew_seconds: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.credential_store = credential_store
        self.platforms = platforms
        self.cache = cache
        self.refresh_skew_seconds = (
            refresh_skew_seconds
            if refresh_skew_seconds is not None
            else get_config().credentials.refresh_skew_seconds
        )
        self.clock = clock or credential_store.clock
        self._refresh_locks = KeyedLock()
        self.logger = get_logger()

    # ==================== READ PATH ====================

    def _load(
        self, platform: Platform, account_id: str, use_cache: bool = True
    ) -> CredentialBundle:
        if use_cache and self.cache is not None:
            cached = self.cache.get(platform, account_id)
            if cached is not None:
                return cached

        try:
            bundle = self.credential_store.get(platform, account_id)
        except CredentialNotFoundError as e:
            raise ReauthRequiredError(
                f"No credential for {platform.value}/{account_id}; reconnect the account",
                platform=platform.value,
                account_id=account_id,
                cause=e,
            ) from e

        if self.cache is not None:
            self.cache.put(bundle)
        return bundle

    def _is_expired(self, bundle: CredentialBundle) -> bool:
        return bundle.is_expired(self.clock(), self.refresh_skew_seconds)

    def get_valid_credential(self, account_id: str, platform: Platform) -> CredentialBundle:
        """
        Return a credential that is usable now.

        Raises:
            ReauthRequiredError: No bundle, expired without refresh token, or
                refresh token rejected (the bundle is deleted in the last two cases)
            CredentialRefreshError: Refresh failed for another reason; the
                bundle is kept and the caller may retry
        """
        platform = Platform(platform)
        bundle = self._load(platform, account_id)
        if not self._is_expired(bundle):
            return bundle

        with self._refresh_locks.hold((platform.value, account_id)):
            # Another caller may have refreshed while this one waited
            current = self._load(platform, account_id, use_cache=False)
            if not self._is_expired(current):
                return current

            if not current.has_refresh_token:
                self._discard(platform, account_id, "expired without refresh token")
                raise ReauthRequiredError(
                    "Credential expired and cannot be refreshed",
                    platform=platform.value,
                    account_id=account_id,
                )

            return self._refresh(current)

    def _refresh(self, current: CredentialBundle) -> CredentialBundle:
        platform = Platform(current.platform)
        account_id = current.account_id
        binding = self.platforms.get(platform)

        self.logger.info(
            "Refreshing credential", extra={"platform": platform.value, "account_id": account_id}
        )

        try:
            refreshed = binding.refresh(current)
        except CredentialRefreshError:
            raise
        except PlatformError as e:
            # Callbacks may classify a rejected grant by code instead of type
            if e.error_code in (ErrorCode.INVALID_GRANT, ErrorCode.REAUTH_REQUIRED):
                self._discard(platform, account_id, "refresh token rejected")
                raise ReauthRequiredError(
                    "Refresh token was rejected; reconnect the account",
                    platform=platform.value,
                    account_id=account_id,
                    cause=e,
                ) from e
            raise self._refresh_failed(current, e, {"upstream_code": e.error_code.value}) from e
        except Exception as e:
            raise self._refresh_failed(current, e, {}) from e

        # Bundles are replaced wholesale; only the refresh token carries over
        # when the platform does not rotate it.
        new_bundle = refreshed.model_copy(
            update={
                "account_id": account_id,
                "platform": platform,
                "refresh_token": refreshed.refresh_token or current.refresh_token,
            }
        )
        self.credential_store.save(new_bundle)
        if self.cache is not None:
            self.cache.put(new_bundle)

        self.logger.info(
            "Credential refreshed",
            extra={
                "platform": platform.value,
                "account_id": account_id,
                "expires_at": new_bundle.expires_at.isoformat() if new_bundle.expires_at else None,
                "refresh_token_rotated": bool(refreshed.refresh_token),
            },
        )
        return new_bundle

    def _refresh_failed(
        self, current: CredentialBundle, cause: Exception, details: dict
    ) -> CredentialRefreshError:
        return CredentialRefreshError(
            f"Credential refresh failed: {str(cause) or type(cause).__name__}",
            platform=Platform(current.platform).value,
            account_id=current.account_id,
            details=details,
            cause=cause,
        )

    def _discard(self, platform: Platform, account_id: str, reason: str) -> None:
        self.logger.warning(
            "Deleting unusable credential",
            extra={"platform": platform.value, "account_id": account_id, "reason": reason},
        )
        self.delete_credential(platform, account_id)

    # ==================== WRITE PATH ====================

    @operation()
    def save_credential(self, bundle: CredentialBundle) -> None:
        self.credential_store.save(bundle)
        if self.cache is not None:
            self.cache.put(bundle)

    def delete_credential(self, platform: Platform, account_id: str) -> bool:
        platform = Platform(platform)
        if self.cache is not None:
            self.cache.invalidate(platform, account_id)
        return self.credential_store.delete(platform, account_id)

    @operation()
    def revoke_credential(self, platform: Platform, account_id: str) -> bool:
        """
        Revoke upstream (best effort) and delete locally.

        Returns:
            False if there was no credential to revoke
        """
        platform = Platform(platform)
        try:
            bundle = self.credential_store.get(platform, account_id)
        except CredentialNotFoundError:
            return False

        try:
            self.platforms.get(platform).revoke(bundle)
        except Exception as e:
            # The platform may already consider the token dead; local delete still proceeds
            self.logger.warning(
                "Upstream revoke failed; deleting credential locally",
                extra={
                    "platform": platform.value,
                    "account_id": account_id,
                    "error_type": type(e).__name__,
                    "error_details": str(e),
                },
            )

        self.delete_credential(platform, account_id)
        return True

    def has_credential(self, platform: Platform, account_id: str) -> bool:
        return self.credential_store.exists(platform, account_id)
