"""
Tests for capability token verification.
"""

import base64
import json
from datetime import timedelta

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from crosspost_core.exceptions import ErrorCode, InvalidCapabilityError, StorageError
from crosspost_core.services.capability_service import (
    CapabilityVerifier,
    Ed25519CapabilityOracle,
    SignatureOracle,
    VerifiedCapability,
    canonical_payload,
)


def _decode(token):
    return json.loads(base64.urlsafe_b64decode(token + "=" * (-len(token) % 4)))


def _encode(fields):
    raw = json.dumps(fields).encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def _public_hex(key):
    return key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw).hex()


class TestEd25519CapabilityOracle:
    def test_valid_token(self, oracle, make_token, signing_key, clock):
        verified = oracle.verify(make_token("alice", message="hello"))

        assert verified.principal_id == "alice"
        assert verified.public_key == _public_hex(signing_key)
        assert verified.issued_at == clock()

    def test_tampered_field_rejected(self, oracle, make_token):
        fields = _decode(make_token("alice"))
        fields["account_id"] = "mallory"

        with pytest.raises(InvalidCapabilityError):
            oracle.verify(_encode(fields))

    def test_signature_from_other_key_rejected(self, oracle, make_token):
        fields = _decode(make_token("alice"))
        other = _decode(make_token("alice", key=Ed25519PrivateKey.generate()))
        fields["signature"] = other["signature"]

        with pytest.raises(InvalidCapabilityError):
            oracle.verify(_encode(fields))

    @pytest.mark.parametrize("token", ["not-a-token", _encode([1, 2]), _encode({"a": 1})])
    def test_malformed_tokens_rejected(self, oracle, token):
        with pytest.raises(InvalidCapabilityError):
            oracle.verify(token)

    def test_malformed_key_rejected(self, oracle, make_token):
        fields = _decode(make_token("alice"))
        fields["public_key"] = "zz"

        with pytest.raises(InvalidCapabilityError):
            oracle.verify(_encode(fields))

    def test_empty_account_rejected(self, oracle, make_token):
        with pytest.raises(InvalidCapabilityError):
            oracle.verify(make_token("  "))

    def test_stale_token_rejected(self, oracle, make_token, clock):
        token = make_token("alice")
        clock.advance(seconds=301)

        with pytest.raises(InvalidCapabilityError) as exc_info:
            oracle.verify(token)
        assert "expired" in exc_info.value.message

    def test_future_token_rejected(self, oracle, make_token, clock):
        token = make_token("alice", timestamp=clock() + timedelta(minutes=5))

        with pytest.raises(InvalidCapabilityError):
            oracle.verify(token)

    def test_small_future_skew_tolerated(self, oracle, make_token, clock):
        token = make_token("alice", timestamp=clock() + timedelta(seconds=10))
        assert oracle.verify(token).principal_id == "alice"

    def test_key_resolver_restricts_keys(self, make_token, signing_key, clock):
        allowed = {"alice": [_public_hex(signing_key)]}
        oracle = Ed25519CapabilityOracle(
            key_resolver=lambda account: allowed.get(account, []), clock=clock
        )

        assert oracle.verify(make_token("alice")).principal_id == "alice"
        with pytest.raises(InvalidCapabilityError):
            oracle.verify(make_token("bob"))

    def test_nonce_replay_rejected(self, store, make_token, clock):
        oracle = Ed25519CapabilityOracle(nonce_store=store, clock=clock)
        token = make_token("alice", nonce="n-1")

        oracle.verify(token)
        with pytest.raises(InvalidCapabilityError) as exc_info:
            oracle.verify(token)
        assert "already been used" in exc_info.value.message

        assert oracle.verify(make_token("alice", nonce="n-2")).nonce == "n-2"

    def test_nonce_forgotten_after_window(self, store, make_token, clock):
        oracle = Ed25519CapabilityOracle(
            max_age_seconds=60, max_clock_skew_seconds=0, nonce_store=store, clock=clock
        )
        oracle.verify(make_token("alice", nonce="n-1"))

        clock.advance(seconds=61)

        assert store.list("nonce/") == []

    def test_canonical_payload_is_order_independent(self):
        fields = {"message": "", "timestamp": 1, "nonce": "n", "public_key": "k", "account_id": "a"}
        reordered = dict(reversed(list(fields.items())))
        assert canonical_payload(fields) == canonical_payload(reordered)


class FailingOracle(SignatureOracle):
    def __init__(self, error):
        self.error = error

    def verify(self, token):
        raise self.error


class FixedOracle(SignatureOracle):
    def verify(self, token):
        return VerifiedCapability(principal_id=token.split(":", 1)[1])


class TestCapabilityVerifier:
    def test_returns_principal(self):
        assert CapabilityVerifier(FixedOracle()).verify("ok:alice") == "alice"

    @pytest.mark.parametrize("token", ["", None])
    def test_missing_token(self, token):
        with pytest.raises(InvalidCapabilityError):
            CapabilityVerifier(FixedOracle()).verify(token)

    @pytest.mark.parametrize(
        "error",
        [
            RuntimeError("oracle down"),
            StorageError("nonce store down"),
            InvalidCapabilityError("forged"),
        ],
    )
    def test_any_oracle_failure_is_invalid_capability(self, error):
        with pytest.raises(InvalidCapabilityError) as exc_info:
            CapabilityVerifier(FailingOracle(error)).verify("token")

        assert exc_info.value.error_code == ErrorCode.INVALID_CAPABILITY
        assert exc_info.value.status_code == 401
