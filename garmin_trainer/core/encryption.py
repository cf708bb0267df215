"""Token encryption utilities using AES-256-GCM.

Ciphertext layout is `iv (12 bytes) || ciphertext || tag (16 bytes)`,
base64url-encoded into a single opaque string. Decryption fails closed:
a tampered, truncated or foreign-key ciphertext always raises.
"""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from loguru import logger

from garmin_trainer.config.settings import settings

IV_LENGTH = 12
TAG_LENGTH = 16
KEY_LENGTH = 32


class EncryptionError(Exception):
    """Raised when encryption/decryption operations fail."""


class EncryptionKeyError(EncryptionError):
    """Raised when GARMIN_TOKEN_ENCRYPTION_KEY is missing or malformed."""


def _get_encryption_key() -> bytes:
    """Load and validate the AES key.

    Returns:
        32-byte key

    Raises:
        EncryptionKeyError: If the key is missing or does not decode to 32 bytes
    """
    raw_key = settings.garmin_token_encryption_key
    if not raw_key:
        raise EncryptionKeyError("GARMIN_TOKEN_ENCRYPTION_KEY is not set")

    try:
        key = base64.b64decode(raw_key, validate=True)
    except (binascii.Error, ValueError) as e:
        raise EncryptionKeyError("GARMIN_TOKEN_ENCRYPTION_KEY must be base64-encoded") from e

    if len(key) != KEY_LENGTH:
        raise EncryptionKeyError(f"GARMIN_TOKEN_ENCRYPTION_KEY must decode to {KEY_LENGTH} bytes, got {len(key)}")
    return key


def _b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def encrypt_secret(plaintext: str) -> str:
    """Encrypt a secret string for storage.

    Args:
        plaintext: UTF-8 secret (access or refresh token)

    Returns:
        base64url string holding iv, ciphertext and tag

    Raises:
        EncryptionKeyError: If the key is not configured correctly
        EncryptionError: If encryption fails
    """
    key = _get_encryption_key()
    try:
        iv = os.urandom(IV_LENGTH)
        # AESGCM appends the 16-byte tag to the ciphertext
        sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
        return base64.urlsafe_b64encode(iv + sealed).decode("ascii").rstrip("=")
    except Exception as e:
        logger.error(f"Secret encryption failed: {type(e).__name__}")
        raise EncryptionError("Unable to encrypt secret") from e


def decrypt_secret(payload: str) -> str:
    """Decrypt a string produced by encrypt_secret.

    Args:
        payload: base64url string holding iv, ciphertext and tag

    Returns:
        Original plaintext

    Raises:
        EncryptionKeyError: If the key is not configured correctly
        EncryptionError: On tag mismatch, truncation, bad encoding or wrong key
    """
    key = _get_encryption_key()
    try:
        raw = _b64url_decode(payload)
    except (binascii.Error, ValueError) as e:
        raise EncryptionError("Unable to decrypt secret") from e

    if len(raw) < IV_LENGTH + TAG_LENGTH:
        raise EncryptionError("Unable to decrypt secret")

    iv, sealed = raw[:IV_LENGTH], raw[IV_LENGTH:]
    try:
        return AESGCM(key).decrypt(iv, sealed, None).decode("utf-8")
    except (InvalidTag, UnicodeDecodeError) as e:
        logger.error("Secret decryption failed: authentication tag mismatch or wrong key")
        raise EncryptionError("Unable to decrypt secret") from e
