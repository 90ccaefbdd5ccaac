"""Encryption at rest for Slack credentials.

Bot tokens and user OAuth tokens are stored as Fernet ciphertext and only
decrypted when a Slack call needs them.
"""

import base64
import functools

from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from archive.common import settings


@functools.lru_cache(maxsize=8)
def derive_encryption_key(secret: str, salt: bytes) -> bytes:
    """Derive a Fernet-compatible key from a secret string.

    Uses PBKDF2 with SHA256 and 480,000 iterations (OWASP recommendation).
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=480000,
    )
    return base64.urlsafe_b64encode(kdf.derive(secret.encode()))


def get_encryption_key() -> bytes:
    secret = settings.SECRETS_ENCRYPTION_KEY
    if not secret:
        raise ValueError(
            "SECRETS_ENCRYPTION_KEY must be set to store Slack tokens. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    return derive_encryption_key(secret, settings.SECRETS_ENCRYPTION_SALT)


def encrypt_value(plaintext: str) -> bytes:
    """Encrypt a secret value for storage."""
    return Fernet(get_encryption_key()).encrypt(plaintext.encode())


def decrypt_value(ciphertext: bytes) -> str:
    """Decrypt a secret value from storage."""
    return Fernet(get_encryption_key()).decrypt(ciphertext).decode()
