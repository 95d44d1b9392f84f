"""
Service tracking which principals may use the system at all.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from ..constants import NOT_AUTHORIZED_STATUS, KeyPrefix
from ..context.operation_context import operation
from ..schemas.auth_schemas import AuthorizationRecord
from ..storage.kv_store import KeyValueStore, build_key
from .base_service import BaseService

if TYPE_CHECKING:
    from .account_link_service import AccountLinkService


class AuthorizationService(BaseService):
    """
    Registry of authorized principals.

    Authorization is a single record per principal under ``auth/<principal>``.
    Reads fail closed: any storage problem reports the principal as not
    authorized.
    """

    def __init__(
        self,
        store: KeyValueStore,
        link_service: Optional["AccountLinkService"] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(store, clock)
        self.link_service = link_service

    @staticmethod
    def _key(principal_id: str) -> str:
        return build_key(KeyPrefix.AUTH, principal_id)

    @operation()
    def authorize(self, principal_id: str) -> AuthorizationRecord:
        """
        Mark a principal as authorized. Idempotent; refreshes authorized_at.
        """
        record = AuthorizationRecord(
            principal_id=principal_id, authorized=True, authorized_at=self.clock()
        )
        self.store.set(self._key(principal_id), record.model_dump(mode="json"))
        self.logger.info("Principal authorized", extra={"principal_id": principal_id})
        return record

    def get_record(self, principal_id: str) -> Optional[AuthorizationRecord]:
        """Return the stored record, or None. Storage errors propagate."""
        value = self.store.get(self._key(principal_id))
        if value is None:
            return None
        return AuthorizationRecord.model_validate(value)

    def is_authorized(self, principal_id: str) -> bool:
        try:
            record = self.get_record(principal_id)
        except PydanticValidationError as e:
            self.logger.error(
                "Stored authorization record is corrupt; treating as not authorized",
                extra={"principal_id": principal_id, "error_details": str(e)},
            )
            return False
        except Exception as e:
            # Fail closed: never grant on a read failure
            self.logger.error(
                "Authorization check failed; treating as not authorized",
                extra={
                    "principal_id": principal_id,
                    "error_type": type(e).__name__,
                    "error_details": str(e),
                },
            )
            return False
        return record is not None and record.authorized is True

    @operation()
    def unauthorize(self, principal_id: str) -> None:
        """
        Remove the authorization record. Idempotent.

        Links and credentials are not touched here; callers tear those down
        first (see GatewayService.unauthorize).
        """
        removed = self.store.delete(self._key(principal_id))
        if removed:
            self.logger.info("Principal unauthorized", extra={"principal_id": principal_id})
        else:
            self.logger.info(
                "Principal was already not authorized", extra={"principal_id": principal_id}
            )

    def status(self, principal_id: str) -> int:
        """
        Return -1 when not authorized, otherwise the number of linked accounts.

        Any value >= 0 means the principal is authorized.
        """
        if not self.is_authorized(principal_id):
            return NOT_AUTHORIZED_STATUS
        if self.link_service is None:
            return 0
        return self.link_service.count_links(principal_id)
