"""
API key encryption at rest.

AES-256-GCM with a scrypt-derived key. The stored form is
base64(salt[32] | iv[16] | tag[16] | ciphertext).
"""

import base64
import binascii
import hashlib
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

SALT_LENGTH = 32
IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
MIN_SECRET_LENGTH = 32

# scrypt cost parameters (N, r, p)
SCRYPT_N = 16384
SCRYPT_R = 8
SCRYPT_P = 1


class EncryptionError(ValueError):
    """Raised when a key cannot be encrypted or decrypted."""


def _derive_key(secret: str, salt: bytes) -> bytes:
    return hashlib.scrypt(
        secret.encode("utf-8"),
        salt=salt,
        n=SCRYPT_N,
        r=SCRYPT_R,
        p=SCRYPT_P,
        dklen=KEY_LENGTH,
    )


def encrypt_api_key(api_key: str, secret: str) -> str:
    """Encrypt an API key for storage."""
    salt = os.urandom(SALT_LENGTH)
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(_derive_key(secret, salt)).encrypt(iv, api_key.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return base64.b64encode(salt + iv + tag + ciphertext).decode("ascii")


def decrypt_api_key(encrypted: str, secret: str) -> str:
    """
    Decrypt a stored API key.

    Raises:
        EncryptionError: If the value is malformed or the secret is wrong
    """
    try:
        combined = base64.b64decode(encrypted, validate=True)
    except (binascii.Error, ValueError) as e:
        raise EncryptionError(f"Encrypted key is not valid base64: {e}")

    header = SALT_LENGTH + IV_LENGTH + TAG_LENGTH
    if len(combined) <= header:
        raise EncryptionError("Encrypted key is too short")

    salt = combined[:SALT_LENGTH]
    iv = combined[SALT_LENGTH:SALT_LENGTH + IV_LENGTH]
    tag = combined[SALT_LENGTH + IV_LENGTH:header]
    ciphertext = combined[header:]

    try:
        plaintext = AESGCM(_derive_key(secret, salt)).decrypt(iv, ciphertext + tag, None)
    except InvalidTag:
        raise EncryptionError("Encrypted key failed authentication")
    return plaintext.decode("utf-8")


def is_encrypted_api_key(value: Optional[str]) -> bool:
    """Whether ``value`` has the shape of an encrypted key."""
    if not value:
        return False
    try:
        decoded = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return False
    return len(decoded) >= SALT_LENGTH + IV_LENGTH + TAG_LENGTH + 1


def get_encryption_secret(secret: Optional[str] = None) -> str:
    """
    Return the encryption secret, from the environment by default.

    Raises:
        EncryptionError: If the secret is missing or shorter than 32 characters
    """
    secret = secret if secret is not None else os.getenv("API_KEY_ENCRYPTION_SECRET")
    if not secret:
        raise EncryptionError("API_KEY_ENCRYPTION_SECRET environment variable is not set")
    if len(secret) < MIN_SECRET_LENGTH:
        raise EncryptionError(
            f"API_KEY_ENCRYPTION_SECRET must be at least {MIN_SECRET_LENGTH} characters long"
        )
    return secret
