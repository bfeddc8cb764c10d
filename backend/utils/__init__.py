"""
Utils Package

Provides utility modules for:
- encryption: Fernet encryption for integration secrets (storefront access tokens)
- money: Currency rounding and processing-fee arithmetic
"""

from .encryption import (
    encrypt_secret,
    decrypt_secret,
    mask_secret,
    is_encryption_configured,
    EncryptionError,
    DecryptionError,
    KeyNotConfiguredError,
)

__all__ = [
    'encrypt_secret',
    'decrypt_secret',
    'mask_secret',
    'is_encryption_configured',
    'EncryptionError',
    'DecryptionError',
    'KeyNotConfiguredError',
]
