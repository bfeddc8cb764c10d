"""
Encryption Utilities for Integration Secrets

Storefront access tokens are encrypted when a store is connected and
decrypted only when a storefront client is built. Uses Fernet symmetric
encryption (AES-128-CBC with HMAC).

Environment Variables:
    ENCRYPTION_KEY: Base64-encoded 32-byte key for Fernet encryption
                    Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"

Usage:
    from utils.encryption import encrypt_secret, decrypt_secret, mask_secret

    stored = encrypt_secret("shpat_abc123", "access_token")
    token = decrypt_secret(stored, "access_token")
    masked = mask_secret(token)  # "********c123"

Security Notes:
    - Never log plaintext tokens
    - Changing ENCRYPTION_KEY makes existing tokens undecryptable; reconnect the stores
"""

import os
import logging
from typing import Optional
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

# Environment variable name for encryption key
ENCRYPTION_KEY_ENV = "ENCRYPTION_KEY"


class EncryptionError(Exception):
    """Base exception for encryption errors"""
    pass


class KeyNotConfiguredError(EncryptionError):
    """Raised when encryption key is not configured"""
    pass


class DecryptionError(EncryptionError):
    """Raised when decryption fails"""
    pass


@lru_cache(maxsize=1)
def _get_fernet() -> Optional[Fernet]:
    """
    Get Fernet instance with configured key.
    Cached for performance.

    Returns:
        Fernet instance or None if not configured
    """
    key = os.environ.get(ENCRYPTION_KEY_ENV)

    if not key:
        logger.warning(f"{ENCRYPTION_KEY_ENV} not configured - encryption disabled")
        return None

    try:
        return Fernet(key.encode() if isinstance(key, str) else key)
    except ValueError as e:
        logger.error(f"Invalid encryption key format: {e}")
        return None


def reset_encryption_cache():
    """Forget the cached key (after ENCRYPTION_KEY changes)."""
    _get_fernet.cache_clear()


def is_encryption_configured() -> bool:
    """Check if encryption is properly configured."""
    return _get_fernet() is not None


def encrypt_secret(plaintext: str, field_name: str = "secret") -> Optional[str]:
    """
    Encrypt an integration secret for storage.

    Raises:
        KeyNotConfiguredError: no ENCRYPTION_KEY, refusing to store plaintext
    """
    if not plaintext:
        return None

    fernet = _get_fernet()
    if not fernet:
        raise KeyNotConfiguredError(f"Encryption key not configured - cannot store {field_name}")

    return fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")


def decrypt_secret(ciphertext: str, field_name: str = "secret") -> Optional[str]:
    """
    Decrypt a stored integration secret.

    Raises:
        KeyNotConfiguredError: If encryption key not configured
        DecryptionError: If the token is invalid or was encrypted with another key
    """
    if not ciphertext:
        return None

    fernet = _get_fernet()
    if not fernet:
        raise KeyNotConfiguredError(f"Encryption key not configured - cannot decrypt {field_name}")

    try:
        return fernet.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
    except InvalidToken:
        logger.error(f"Decryption failed for {field_name} - invalid token")
        raise DecryptionError(f"Invalid encryption token for {field_name}")


def mask_secret(secret: str, visible_chars: int = 4) -> str:
    """Mask a secret for display, keeping the last few characters."""
    if not secret:
        return ""
    if len(secret) <= visible_chars:
        return "*" * len(secret)
    return "*" * (len(secret) - visible_chars) + secret[-visible_chars:]
