"""
Capability token verification.

A capability token is a caller-presented, signed proof of control over a
principal's key for the current request. Verification is delegated to a
``SignatureOracle``; ``CapabilityVerifier`` only normalizes the outcome into
a principal id or an ``InvalidCapabilityError``.

The bundled ``Ed25519CapabilityOracle`` understands tokens of the form
``base64url(json)`` where the JSON object carries::

    account_id   principal id
    public_key   hex-encoded raw Ed25519 public key
    nonce        caller-chosen unique string
    timestamp    issue time, integer milliseconds since the epoch
    message      free-form text the caller signed (e.g. the action)
    signature    hex-encoded signature over the canonical payload

The canonical payload is the JSON of every field except ``signature`` with
sorted keys and compact separators.
"""

import base64
import binascii
import json
import os
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from pydantic import BaseModel

from ..config import get_config
from ..db.db_base import utc_now
from ..exceptions import BaseError, InvalidCapabilityError
from ..storage.kv_store import KeyValueStore, build_key
from ..utils.logger import get_logger

SIGNED_FIELDS = ("account_id", "public_key", "nonce", "timestamp", "message")

KeyResolver = Callable[[str], Iterable[str]]


class VerifiedCapability(BaseModel):
    """What a successful verification proves."""

    principal_id: str
    public_key: Optional[str] = None
    nonce: Optional[str] = None
    issued_at: Optional[datetime] = None


class SignatureOracle(ABC):
    """External verifier for capability tokens."""

    @abstractmethod
    def verify(self, token: str) -> VerifiedCapability:
        """
        Verify a token.

        Raises:
            InvalidCapabilityError: Or any other exception, on failure
        """


def _b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def canonical_payload(fields: dict) -> bytes:
    return json.dumps(
        {name: fields[name] for name in SIGNED_FIELDS}, sort_keys=True, separators=(",", ":")
    ).encode("utf-8")


def issue_capability_token(
    private_key: Ed25519PrivateKey,
    account_id: str,
    message: str = "",
    nonce: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> str:
    """Build a token the Ed25519 oracle accepts. Used by clients and tests."""
    issued_at = timestamp or utc_now()
    fields = {
        "account_id": account_id,
        "public_key": private_key.public_key()
        .public_bytes(Encoding.Raw, PublicFormat.Raw)
        .hex(),
        "nonce": nonce or os.urandom(16).hex(),
        "timestamp": int(issued_at.timestamp() * 1000),
        "message": message,
    }
    fields["signature"] = private_key.sign(canonical_payload(fields)).hex()
    raw = json.dumps(fields, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


class Ed25519CapabilityOracle(SignatureOracle):
    """
    Verifies Ed25519-signed capability tokens.

    Replay is bounded by the freshness window. When a ``nonce_store`` is
    given, each nonce is also remembered for the length of the window and a
    second presentation is rejected.
    """

    def __init__(
        self,
        max_age_seconds: Optional[float] = None,
        max_clock_skew_seconds: Optional[float] = None,
        key_resolver: Optional[KeyResolver] = None,
        nonce_store: Optional[KeyValueStore] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        security = get_config().security
        self.max_age = timedelta(
            seconds=max_age_seconds
            if max_age_seconds is not None
            else security.capability_max_age_seconds
        )
        self.max_skew = timedelta(
            seconds=max_clock_skew_seconds
            if max_clock_skew_seconds is not None
            else security.capability_max_clock_skew_seconds
        )
        self.key_resolver = key_resolver
        self.nonce_store = nonce_store
        self.clock = clock

    def _decode(self, token: str) -> dict:
        try:
            fields = json.loads(_b64url_decode(token))
        except (binascii.Error, ValueError, TypeError) as e:
            raise InvalidCapabilityError(
                "Capability token is not valid base64url JSON", cause=e
            ) from e

        if not isinstance(fields, dict):
            raise InvalidCapabilityError("Capability token must be a JSON object")
        missing = [name for name in SIGNED_FIELDS + ("signature",) if name not in fields]
        if missing:
            raise InvalidCapabilityError(
                "Capability token is missing fields", missing=",".join(missing)
            )
        if not isinstance(fields["account_id"], str) or not fields["account_id"].strip():
            raise InvalidCapabilityError("Capability token has an empty account_id")
        return fields

    def _check_signature(self, fields: dict) -> None:
        try:
            public_key = Ed25519PublicKey.from_public_bytes(bytes.fromhex(fields["public_key"]))
            signature = bytes.fromhex(fields["signature"])
        except (ValueError, TypeError) as e:
            raise InvalidCapabilityError(
                "Capability key or signature is malformed", cause=e
            ) from e

        try:
            public_key.verify(signature, canonical_payload(fields))
        except InvalidSignature as e:
            raise InvalidCapabilityError(
                "Capability signature verification failed", account_id=fields["account_id"]
            ) from e

    def _check_freshness(self, fields: dict) -> datetime:
        try:
            issued_at = datetime.fromtimestamp(int(fields["timestamp"]) / 1000, tz=timezone.utc)
        except (ValueError, TypeError, OverflowError, OSError) as e:
            raise InvalidCapabilityError("Capability timestamp is malformed", cause=e) from e

        now = self.clock()
        if issued_at > now + self.max_skew:
            raise InvalidCapabilityError(
                "Capability token is issued in the future", account_id=fields["account_id"]
            )
        if now - issued_at > self.max_age:
            raise InvalidCapabilityError(
                "Capability token has expired", account_id=fields["account_id"]
            )
        return issued_at

    def _check_key_allowed(self, fields: dict) -> None:
        if self.key_resolver is None:
            return
        allowed = set(self.key_resolver(fields["account_id"]))
        if fields["public_key"] not in allowed:
            raise InvalidCapabilityError(
                "Capability key is not registered for this account",
                account_id=fields["account_id"],
            )

    def _remember_nonce(self, fields: dict) -> None:
        if self.nonce_store is None:
            return

        def claim(current):
            if current is not None:
                raise InvalidCapabilityError(
                    "Capability nonce has already been used", account_id=fields["account_id"]
                )
            return {"seen_at": self.clock().isoformat()}

        key = build_key("nonce", fields["account_id"], str(fields["nonce"]))
        self.nonce_store.update(key, claim, ttl=(self.max_age + self.max_skew).total_seconds())

    def verify(self, token: str) -> VerifiedCapability:
        fields = self._decode(token)
        self._check_signature(fields)
        issued_at = self._check_freshness(fields)
        self._check_key_allowed(fields)
        self._remember_nonce(fields)
        return VerifiedCapability(
            principal_id=fields["account_id"],
            public_key=fields["public_key"],
            nonce=str(fields["nonce"]),
            issued_at=issued_at,
        )


class CapabilityVerifier:
    """Turns a capability token into a principal id, or fails."""

    def __init__(self, oracle: SignatureOracle):
        self.oracle = oracle
        self.logger = get_logger()

    def verify(self, token: str) -> str:
        """
        Verify a capability token.

        Returns:
            The principal id the token proves control of

        Raises:
            InvalidCapabilityError: If the token is malformed, forged or replayed
        """
        if not token or not isinstance(token, str):
            raise InvalidCapabilityError("Capability token is required")

        try:
            verified = self.oracle.verify(token)
        except InvalidCapabilityError:
            raise
        except BaseError as e:
            raise InvalidCapabilityError(
                f"Capability verification failed: {e.message}", cause=e
            ) from e
        except Exception as e:
            raise InvalidCapabilityError(
                f"Capability verification failed: {type(e).__name__}", cause=e
            ) from e

        principal_id = verified.principal_id if verified else None
        if not principal_id or not principal_id.strip():
            raise InvalidCapabilityError("Capability oracle returned no principal")

        self.logger.debug("Capability verified", extra={"principal_id": principal_id})
        return principal_id
