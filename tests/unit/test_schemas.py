"""Tests for the pydantic schemas."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from crosspost_core.constants import Platform
from crosspost_core.schemas import (
    CredentialBundle,
    LinkedAccount,
    MultiTargetResult,
    OperationTarget,
    SuccessDetail,
    UnauthorizeResult,
)
from tests.fixtures.factories import FROZEN_NOW, CredentialBundleFactory


class TestCredentialBundle:
    def test_tokens_hidden_from_repr(self):
        bundle = CredentialBundleFactory(access_token="secret-a", refresh_token="secret-r")
        assert "secret-a" not in repr(bundle)
        assert "secret-r" not in repr(bundle)

    def test_is_frozen(self):
        bundle = CredentialBundleFactory()
        with pytest.raises(PydanticValidationError):
            bundle.access_token = "changed"

    def test_naive_expiry_treated_as_utc(self):
        bundle = CredentialBundleFactory(expires_at=datetime(2025, 1, 15, 14, 0))
        assert bundle.expires_at == datetime(2025, 1, 15, 14, 0, tzinfo=timezone.utc)

    def test_is_expired(self):
        bundle = CredentialBundleFactory(expires_at=FROZEN_NOW + timedelta(seconds=30))

        assert bundle.is_expired(FROZEN_NOW) is False
        assert bundle.is_expired(FROZEN_NOW, skew_seconds=60) is True
        assert CredentialBundleFactory(expires_at=None).is_expired(FROZEN_NOW) is False

    def test_unknown_token_type_rejected(self):
        with pytest.raises(PydanticValidationError):
            CredentialBundleFactory(token_type="basic")

    def test_extra_fields_rejected(self):
        with pytest.raises(PydanticValidationError):
            CredentialBundleFactory(password="nope")

    def test_from_token_response(self):
        bundle = CredentialBundle.from_token_response(
            Platform.TWITTER,
            "u123",
            {
                "access_token": "a",
                "refresh_token": "r",
                "expires_in": 7200,
                "scope": "tweet.read tweet.write",
                "token_type": "bearer",
            },
            FROZEN_NOW,
        )

        assert bundle.expires_at == FROZEN_NOW + timedelta(hours=2)
        assert bundle.scope == ["tweet.read", "tweet.write"]
        assert bundle.has_refresh_token is True

    def test_from_token_response_without_expiry(self):
        bundle = CredentialBundle.from_token_response(
            Platform.TWITTER, "u123", {"access_token": "a"}, FROZEN_NOW
        )
        assert bundle.expires_at is None
        assert bundle.has_refresh_token is False


class TestOperationSchemas:
    def test_target_from_mapping(self):
        target = OperationTarget.model_validate({"platform": "twitter", "account_id": "u1"})
        assert target.platform == Platform.TWITTER
        assert target.payload == {}

    @pytest.mark.parametrize(
        "raw", [{"platform": "myspace", "account_id": "u1"}, {"platform": "twitter"}]
    )
    def test_invalid_target(self, raw):
        with pytest.raises(PydanticValidationError):
            OperationTarget.model_validate(raw)

    def test_processed_count(self):
        result = MultiTargetResult(
            successes=[SuccessDetail(platform=Platform.TWITTER, account_id="u1")]
        )
        assert result.processed == 1


class TestAuthSchemas:
    def test_linked_account_equality_by_pair(self):
        assert LinkedAccount(platform="twitter", account_id="u1") == LinkedAccount(
            platform=Platform.TWITTER, account_id="u1"
        )

    def test_unauthorize_result_complete(self):
        assert UnauthorizeResult(principal_id="alice").complete is True
