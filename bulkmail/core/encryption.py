"""AES-256-GCM field encryption for recipient addresses, subjects and names.

Stored format (base64 of the concatenation)::

    salt (64 bytes) | iv (16 bytes) | tag (16 bytes) | ciphertext

The key is derived per value from the configured secret and the embedded salt
with PBKDF2-HMAC-SHA512 (100,000 iterations), so every stored value carries
everything needed to decrypt it.

Rows written before encryption was introduced hold plaintext. ``decrypt``
therefore never raises: anything that does not decrypt is returned unchanged.
``decrypt_outcome`` exposes which of the three cases applied so callers can
alert on ciphertext that looks genuine but fails verification.
"""
from __future__ import annotations

import base64
import binascii
import enum
import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from bulkmail.core.audit import log_audit_event
from bulkmail.core.config import settings
from bulkmail.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

SALT_LENGTH = 64
IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
KDF_ITERATIONS = 100_000

# An empty plaintext still produces salt + iv + tag
MIN_ENCRYPTED_LENGTH = SALT_LENGTH + IV_LENGTH + TAG_LENGTH


class DecryptStatus(str, enum.Enum):
    DECRYPTED = "decrypted"
    LEGACY_PLAINTEXT = "legacy_plaintext"
    CORRUPTED = "corrupted"


@dataclass(frozen=True)
class DecryptOutcome:
    status: DecryptStatus
    value: str


class EncryptionCodec:
    """Encrypts and decrypts text fields with a secret injected at construction."""

    def __init__(self, secret: str | None):
        if not secret:
            raise ConfigurationError("ENCRYPTION_KEY")
        self._secret = secret.encode("utf-8")

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA512(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=KDF_ITERATIONS,
        )
        return kdf.derive(self._secret)

    def encrypt(self, plaintext: str) -> str:
        salt = os.urandom(SALT_LENGTH)
        iv = os.urandom(IV_LENGTH)
        key = self._derive_key(salt)
        # AESGCM appends the 16-byte tag to the ciphertext
        sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return base64.b64encode(salt + iv + tag + ciphertext).decode("ascii")

    def decrypt_outcome(self, value: str) -> DecryptOutcome:
        try:
            raw = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            return DecryptOutcome(DecryptStatus.LEGACY_PLAINTEXT, value)
        if len(raw) < MIN_ENCRYPTED_LENGTH:
            return DecryptOutcome(DecryptStatus.LEGACY_PLAINTEXT, value)

        salt = raw[:SALT_LENGTH]
        iv = raw[SALT_LENGTH:SALT_LENGTH + IV_LENGTH]
        tag = raw[SALT_LENGTH + IV_LENGTH:MIN_ENCRYPTED_LENGTH]
        ciphertext = raw[MIN_ENCRYPTED_LENGTH:]
        try:
            plaintext = AESGCM(self._derive_key(salt)).decrypt(iv, ciphertext + tag, None)
            return DecryptOutcome(DecryptStatus.DECRYPTED, plaintext.decode("utf-8"))
        except (InvalidTag, UnicodeDecodeError):
            return DecryptOutcome(DecryptStatus.CORRUPTED, value)

    def decrypt(self, value: str | None) -> str | None:
        """Decrypt ``value``, returning it unchanged if it does not decrypt."""
        if value is None:
            return None
        outcome = self.decrypt_outcome(value)
        if outcome.status is DecryptStatus.LEGACY_PLAINTEXT:
            logger.debug("Value is not in encrypted format; treating as legacy plaintext")
        elif outcome.status is DecryptStatus.CORRUPTED:
            # Tampered, wrong key, or plaintext that happens to look like ciphertext
            logger.warning("Encrypted value failed verification; returning stored value as-is")
            log_audit_event("encryption.verify_failed", status="failure", length=len(value))
        return outcome.value

    def decrypt_strict(self, value: str) -> str:
        """Decrypt or raise ``ValueError``; for values that must never fall back."""
        outcome = self.decrypt_outcome(value)
        if outcome.status is not DecryptStatus.DECRYPTED:
            raise ValueError("Decryption failed")
        return outcome.value


@lru_cache
def get_codec() -> EncryptionCodec:
    return EncryptionCodec(settings.ENCRYPTION_KEY)
