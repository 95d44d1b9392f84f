"""
Encrypted credential storage.

Bundles are serialized to JSON, sealed with AES-256-GCM and stored under
``credentials/<platform>/<account>``. Every get, save and delete appends an
access log entry.
"""

from datetime import datetime
from typing import Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from ..constants import AccessOperation, AccessOutcome, KeyPrefix, Platform
from ..exceptions import (
    CredentialIntegrityError,
    CredentialNotFoundError,
    StorageError,
)
from ..schemas.credential_schemas import CredentialBundle
from ..storage.kv_store import KeyValueStore, build_key
from ..utils.encryption_utils import ENVELOPE_VERSION, CredentialCipher
from .access_log_service import AccessLogService
from .base_service import BaseService


class CredentialStoreService(BaseService):
    """Authenticated-encryption store for credential bundles."""

    def __init__(
        self,
        store: KeyValueStore,
        cipher: CredentialCipher,
        access_log: AccessLogService,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(store, clock)
        self.cipher = cipher
        self.access_log = access_log

    @staticmethod
    def _key(platform: Platform, account_id: str) -> str:
        return build_key(KeyPrefix.CREDENTIALS, platform, account_id)

    def get(self, platform: Platform, account_id: str) -> CredentialBundle:
        """
        Load and decrypt a bundle.

        Raises:
            CredentialNotFoundError: If no bundle is stored, or the read failed
            CredentialIntegrityError: If the stored ciphertext fails authentication
        """
        platform = Platform(platform)
        try:
            record = self.store.get(self._key(platform, account_id))
        except StorageError as e:
            # Reads fail closed
            raise CredentialNotFoundError(
                "Credential could not be read",
                platform=platform.value,
                account_id=account_id,
                cause=e,
            ) from e

        if record is None:
            self.access_log.append(
                platform, account_id, AccessOperation.READ, AccessOutcome.NOT_FOUND
            )
            raise CredentialNotFoundError(
                f"No credential stored for {platform.value}/{account_id}",
                platform=platform.value,
                account_id=account_id,
            )

        try:
            plaintext = self.cipher.decrypt_from_text(
                record["ciphertext"], platform.value, account_id
            )
            bundle = CredentialBundle.model_validate_json(plaintext)
        except CredentialIntegrityError:
            self.access_log.append(
                platform, account_id, AccessOperation.READ, AccessOutcome.FAILURE, "integrity"
            )
            raise
        except (KeyError, TypeError, PydanticValidationError) as e:
            self.access_log.append(
                platform, account_id, AccessOperation.READ, AccessOutcome.FAILURE, "malformed"
            )
            raise CredentialIntegrityError(
                "Stored credential record is malformed",
                platform=platform.value,
                account_id=account_id,
                cause=e,
            ) from e

        self.access_log.append(platform, account_id, AccessOperation.READ, AccessOutcome.SUCCESS)
        return bundle

    def save(self, bundle: CredentialBundle) -> None:
        platform = Platform(bundle.platform)
        ciphertext = self.cipher.encrypt_to_text(
            bundle.model_dump_json().encode("utf-8"), platform.value, bundle.account_id
        )
        self.store.set(
            self._key(platform, bundle.account_id),
            {
                "version": ENVELOPE_VERSION,
                "ciphertext": ciphertext,
                "updated_at": self.clock().isoformat(),
            },
        )
        self.access_log.append(
            platform, bundle.account_id, AccessOperation.WRITE, AccessOutcome.SUCCESS
        )
        self.logger.info(
            "Credential stored",
            extra={
                "platform": platform.value,
                "account_id": bundle.account_id,
                "expires_at": bundle.expires_at.isoformat() if bundle.expires_at else None,
                "has_refresh_token": bundle.has_refresh_token,
            },
        )

    def delete(self, platform: Platform, account_id: str) -> bool:
        """Delete a bundle. Idempotent; returns False if nothing was stored."""
        platform = Platform(platform)
        removed = self.store.delete(self._key(platform, account_id))
        self.access_log.append(
            platform,
            account_id,
            AccessOperation.DELETE,
            AccessOutcome.SUCCESS if removed else AccessOutcome.NOT_FOUND,
        )
        if removed:
            self.logger.info(
                "Credential deleted",
                extra={"platform": platform.value, "account_id": account_id},
            )
        return removed

    def exists(self, platform: Platform, account_id: str) -> bool:
        """True when a bundle is stored. Not audited; does not decrypt."""
        try:
            return self.store.get(self._key(platform, account_id)) is not None
        except StorageError:
            return False
