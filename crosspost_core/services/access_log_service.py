"""
Append-only audit trail of credential store operations.
"""

import itertools
import uuid
from datetime import datetime
from typing import Callable, List, Optional

from ..constants import AccessOperation, AccessOutcome, KeyPrefix, Platform
from ..context.principal_context import PrincipalContext
from ..exceptions import StorageError
from ..schemas.credential_schemas import AccessLogEntry
from ..storage.kv_store import KeyValueStore, build_key
from .base_service import BaseService

# Sortable timestamp so key order is chronological order
_KEY_TIMESTAMP_FORMAT = "%Y%m%dT%H%M%S%fZ"

# Keeps entries written within the same microsecond in write order
_sequence = itertools.count()


class AccessLogService(BaseService):
    """
    Writes one entry per credential read, write or delete.

    Entries live under ``access_log/<platform>/<account>/<ts>-<seq>-<uuid>`` and
    are never updated or removed by normal flow.
    """

    def __init__(
        self,
        store: KeyValueStore,
        enabled: bool = True,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(store, clock)
        self.enabled = enabled

    def append(
        self,
        platform: Platform,
        account_id: str,
        operation: AccessOperation,
        outcome: AccessOutcome,
        detail: Optional[str] = None,
    ) -> Optional[AccessLogEntry]:
        if not self.enabled:
            return None

        entry = AccessLogEntry(
            account_id=account_id,
            platform=platform,
            operation=operation,
            timestamp=self.clock(),
            outcome=outcome,
            principal_id=PrincipalContext.get_current_principal_id(),
            detail=detail,
        )
        suffix = "-".join(
            [
                entry.timestamp.strftime(_KEY_TIMESTAMP_FORMAT),
                f"{next(_sequence):012d}",
                uuid.uuid4().hex[:12],
            ]
        )
        key = build_key(KeyPrefix.ACCESS_LOG, platform, account_id, suffix)
        log_extra = {
            "platform": Platform(platform).value,
            "account_id": account_id,
            "access_operation": entry.operation.value,
            "outcome": entry.outcome.value,
        }
        try:
            self.store.set(key, entry.model_dump(mode="json"))
        except StorageError as e:
            # Audit entries are best effort
            self.logger.warning(
                "Credential access not recorded", extra={**log_extra, "error_id": e.error_id}
            )
            return None

        self.logger.debug("Credential access recorded", extra=log_extra)
        return entry

    def list_entries(
        self, platform: Platform, account_id: str, limit: Optional[int] = None
    ) -> List[AccessLogEntry]:
        """Return entries for one account, oldest first."""
        prefix = build_key(KeyPrefix.ACCESS_LOG, platform, account_id) + "/"
        entries = [AccessLogEntry.model_validate(value) for _key, value in self.store.list(prefix)]
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries
