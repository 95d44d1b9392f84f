"""
Tests for the authorization registry.
"""

from unittest.mock import patch

from crosspost_core.constants import NOT_AUTHORIZED_STATUS, Platform
from crosspost_core.exceptions import StorageError


class TestAuthorize:
    def test_authorize_records_principal(self, authorization_service, store, clock):
        record = authorization_service.authorize("alice")

        assert record.principal_id == "alice"
        assert record.authorized is True
        assert record.authorized_at == clock()
        assert store.get("auth/alice")["principal_id"] == "alice"
        assert authorization_service.is_authorized("alice") is True

    def test_authorize_is_idempotent_and_refreshes_timestamp(self, authorization_service, clock):
        authorization_service.authorize("alice")
        clock.advance(minutes=5)

        record = authorization_service.authorize("alice")

        assert authorization_service.get_record("alice").authorized_at == record.authorized_at
        assert record.authorized_at == clock()

    def test_unknown_principal_not_authorized(self, authorization_service):
        assert authorization_service.is_authorized("nobody") is False
        assert authorization_service.get_record("nobody") is None


class TestUnauthorize:
    def test_round_trip(self, authorization_service):
        authorization_service.authorize("alice")
        authorization_service.unauthorize("alice")

        assert authorization_service.is_authorized("alice") is False

    def test_unauthorize_is_idempotent(self, authorization_service):
        authorization_service.unauthorize("alice")
        authorization_service.unauthorize("alice")

        assert authorization_service.is_authorized("alice") is False


class TestFailClosed:
    def test_storage_error_reads_as_not_authorized(self, authorization_service, store):
        authorization_service.authorize("alice")

        with patch.object(store, "get", side_effect=StorageError("db down")):
            assert authorization_service.is_authorized("alice") is False

    def test_corrupt_record_reads_as_not_authorized(self, authorization_service, store):
        store.set("auth/alice", {"principal_id": "alice", "authorized_at": "not a date"})

        assert authorization_service.is_authorized("alice") is False

    def test_record_with_authorized_false(self, authorization_service, store, clock):
        store.set(
            "auth/alice",
            {"principal_id": "alice", "authorized": False, "authorized_at": clock().isoformat()},
        )

        assert authorization_service.is_authorized("alice") is False


class TestStatus:
    def test_not_authorized(self, authorization_service):
        assert authorization_service.status("alice") == NOT_AUTHORIZED_STATUS

    def test_authorized_without_links(self, authorization_service):
        authorization_service.authorize("alice")
        assert authorization_service.status("alice") == 0

    def test_counts_links(self, authorization_service, link_service):
        authorization_service.authorize("alice")
        link_service.link("alice", Platform.TWITTER, "u1")
        link_service.link("alice", Platform.TWITTER, "u2")

        assert authorization_service.status("alice") == 2

    def test_links_without_authorization(self, authorization_service, link_service):
        link_service.link("alice", Platform.TWITTER, "u1")
        assert authorization_service.status("alice") == NOT_AUTHORIZED_STATUS
