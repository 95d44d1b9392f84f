"""
Authenticated encryption utilities for credential storage.

Values are sealed with AES-256-GCM. A per-record key is derived from the
master key with HKDF-SHA256, and the associated data binds each ciphertext
to the record it was written for, so a ciphertext copied under another key
fails authentication instead of decrypting.

Envelope layout: ``version (1 byte) || nonce (12 bytes) || ciphertext+tag``.
"""

import base64
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ..exceptions import CredentialIntegrityError, ErrorCode, ServiceError

ENVELOPE_VERSION = 1
NONCE_SIZE = 12
KEY_SIZE = 32
HKDF_SALT = b"crosspost_core.credentials"


def generate_master_key() -> str:
    """Generate a new base64-encoded master key."""
    return base64.b64encode(os.urandom(KEY_SIZE)).decode("ascii")


def derive_key(master_key: bytes, info: str) -> bytes:
    """Derive a record key from the master key."""
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=HKDF_SALT,
        info=info.encode("utf-8"),
    )
    return hkdf.derive(master_key)


def credential_aad(platform: str, account_id: str) -> bytes:
    """Associated data binding a ciphertext to its (platform, account_id)."""
    return f"{platform}:{account_id}".encode("utf-8")


class CredentialCipher:
    """Seals and opens credential payloads with AES-256-GCM."""

    def __init__(self, master_key: Optional[bytes]):
        if not master_key or len(master_key) != KEY_SIZE:
            raise ServiceError(
                "Credential encryption requires a 32-byte master key",
                error_code=ErrorCode.CONFIGURATION_ERROR,
                operation="credential_cipher_init",
            )
        self._master_key = master_key

    def _record_key(self, platform: str, account_id: str) -> bytes:
        return derive_key(self._master_key, f"credential:{platform}:{account_id}")

    def encrypt(self, plaintext: bytes, platform: str, account_id: str) -> bytes:
        nonce = os.urandom(NONCE_SIZE)
        aesgcm = AESGCM(self._record_key(platform, account_id))
        ciphertext = aesgcm.encrypt(nonce, plaintext, credential_aad(platform, account_id))
        return bytes([ENVELOPE_VERSION]) + nonce + ciphertext

    def decrypt(self, envelope: bytes, platform: str, account_id: str) -> bytes:
        """
        Open an envelope written by encrypt.

        Raises:
            CredentialIntegrityError: If the envelope is malformed or fails authentication
        """
        if len(envelope) <= 1 + NONCE_SIZE or envelope[0] != ENVELOPE_VERSION:
            raise CredentialIntegrityError(
                "Credential envelope is malformed", platform=platform, account_id=account_id
            )

        nonce = envelope[1 : 1 + NONCE_SIZE]
        ciphertext = envelope[1 + NONCE_SIZE :]
        aesgcm = AESGCM(self._record_key(platform, account_id))
        try:
            return aesgcm.decrypt(nonce, ciphertext, credential_aad(platform, account_id))
        except InvalidTag as e:
            raise CredentialIntegrityError(
                platform=platform, account_id=account_id, cause=e
            ) from e

    def encrypt_to_text(self, plaintext: bytes, platform: str, account_id: str) -> str:
        """Encrypt and base64-encode for storage in text/JSON columns."""
        return base64.b64encode(self.encrypt(plaintext, platform, account_id)).decode("ascii")

    def decrypt_from_text(self, encoded: str, platform: str, account_id: str) -> bytes:
        try:
            envelope = base64.b64decode(encoded, validate=True)
        except (ValueError, TypeError) as e:
            raise CredentialIntegrityError(
                "Credential envelope is not valid base64",
                platform=platform,
                account_id=account_id,
                cause=e,
            ) from e
        return self.decrypt(envelope, platform, account_id)
