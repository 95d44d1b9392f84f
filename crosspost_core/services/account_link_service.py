"""
Principal to platform-account links.

Two records are kept per relation:

- ``links/<principal>``: the principal's ordered list of linked accounts
- ``link_refs/<platform>/<account>``: principals referencing that account

The reverse index lets callers tell when the last principal lets go of an
account so its credential can be removed. Both records are only ever
changed through the store's atomic ``update``.
"""

from datetime import datetime
from typing import Callable, List, NamedTuple, Optional

from ..constants import KeyPrefix, Platform
from ..context.operation_context import operation
from ..exceptions import StorageError
from ..schemas.auth_schemas import LinkedAccount
from ..storage.kv_store import KeyValueStore, build_key
from .base_service import BaseService


class UnlinkResult(NamedTuple):
    removed: bool
    remaining_references: int


class AccountLinkService(BaseService):
    """Relation set between principals and (platform, account_id) pairs."""

    def __init__(self, store: KeyValueStore, clock: Optional[Callable[[], datetime]] = None):
        super().__init__(store, clock)

    @staticmethod
    def _links_key(principal_id: str) -> str:
        return build_key(KeyPrefix.LINKS, principal_id)

    @staticmethod
    def _refs_key(platform: Platform, account_id: str) -> str:
        return build_key(KeyPrefix.LINK_REFS, platform, account_id)

    @operation()
    def link(self, principal_id: str, platform: Platform, account_id: str) -> bool:
        """
        Add a link if absent.

        Returns:
            True if the link was added, False if it already existed
        """
        account = LinkedAccount(platform=platform, account_id=account_id)
        entry = account.model_dump(mode="json")
        added = []

        def add_ref(current):
            principals = list(current or [])
            if principal_id not in principals:
                principals.append(principal_id)
            return principals

        def add_link(current):
            links = list(current or [])
            if entry not in links:
                links.append(entry)
                added.append(True)
            return links

        # Reference first: a failure between the two writes leaves an extra
        # reference, which only delays credential cleanup.
        self.store.update(self._refs_key(account.platform, account_id), add_ref)
        self.store.update(self._links_key(principal_id), add_link)

        self.logger.info(
            "Account linked" if added else "Account already linked",
            extra={
                "principal_id": principal_id,
                "platform": account.platform.value,
                "account_id": account_id,
            },
        )
        return bool(added)

    @operation()
    def unlink(self, principal_id: str, platform: Platform, account_id: str) -> UnlinkResult:
        """
        Remove a link if present. Idempotent.

        Returns:
            Whether a link was removed and how many principals still reference the account
        """
        account = LinkedAccount(platform=platform, account_id=account_id)
        entry = account.model_dump(mode="json")
        removed = []

        def drop_link(current):
            links = list(current or [])
            if entry in links:
                links.remove(entry)
                removed.append(True)
            return links or None

        def drop_ref(current):
            principals = [p for p in (current or []) if p != principal_id]
            return principals or None

        # Link first, reference second (mirror image of link()).
        self.store.update(self._links_key(principal_id), drop_link)
        remaining = self.store.update(self._refs_key(account.platform, account_id), drop_ref)
        remaining_count = len(remaining or [])

        self.logger.info(
            "Account unlinked" if removed else "Account was not linked",
            extra={
                "principal_id": principal_id,
                "platform": account.platform.value,
                "account_id": account_id,
                "remaining_references": remaining_count,
            },
        )
        return UnlinkResult(bool(removed), remaining_count)

    def list_links(self, principal_id: str) -> List[LinkedAccount]:
        """Linked accounts in the order they were first linked."""
        value = self.store.get(self._links_key(principal_id)) or []
        return [LinkedAccount.model_validate(item) for item in value]

    def has_link(self, principal_id: str, platform: Platform, account_id: str) -> bool:
        """Fails closed: a storage error reports no link."""
        try:
            links = self.list_links(principal_id)
        except StorageError:
            return False
        target = LinkedAccount(platform=platform, account_id=account_id)
        return target in links

    def count_links(self, principal_id: str) -> int:
        return len(self.list_links(principal_id))

    def principals_for(self, platform: Platform, account_id: str) -> List[str]:
        """Principals currently linked to an account."""
        return list(self.store.get(self._refs_key(platform, account_id)) or [])
