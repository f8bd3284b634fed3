"""
Encryption of third-party credentials kept at rest

OAuth provider access tokens are stored with Fernet (symmetric encryption)
from the cryptography library, keyed from SECRET_KEY.
"""

import base64
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from tenant_auth.core.config import settings

logger = logging.getLogger(__name__)

_KDF_SALT = b"tenant_auth.provider_tokens"
_KDF_ITERATIONS = 100_000


class EncryptionError(Exception):
    """Raised when a credential cannot be encrypted or decrypted"""
    pass


class CredentialCipher:
    """
    Fernet cipher derived from a secret passphrase.

    The passphrase is stretched with PBKDF2-SHA256 so that any sufficiently
    long SECRET_KEY yields a valid 32-byte Fernet key.
    """

    def __init__(self, secret_key: str):
        if not secret_key or len(secret_key) < 16:
            raise EncryptionError("SECRET_KEY is not configured or too short")

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=_KDF_SALT,
            iterations=_KDF_ITERATIONS,
        )
        key = base64.urlsafe_b64encode(kdf.derive(secret_key.encode()))
        self._fernet = Fernet(key)

    def encrypt(self, plaintext: str) -> str:
        if not plaintext:
            raise EncryptionError("Cannot encrypt empty string")
        return self._fernet.encrypt(plaintext.encode()).decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        if not ciphertext:
            raise EncryptionError("Cannot decrypt empty string")
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode("utf-8")
        except InvalidToken as e:
            raise EncryptionError("Ciphertext is invalid or was produced with another key") from e


_cipher: Optional[CredentialCipher] = None


def get_cipher() -> CredentialCipher:
    """Return the process-wide cipher, built on first use"""
    global _cipher
    if _cipher is None:
        _cipher = CredentialCipher(settings.SECRET_KEY)
    return _cipher


def encrypt_token(token: str) -> str:
    """
    Encrypt a provider token for storage

    Args:
        token: Token to encrypt

    Returns:
        Encrypted token
    """
    return get_cipher().encrypt(token)


def decrypt_token(encrypted_token: str) -> Optional[str]:
    """
    Decrypt a stored provider token

    Returns:
        Decrypted token or None if decryption fails
    """
    try:
        return get_cipher().decrypt(encrypted_token)
    except EncryptionError as e:
        logger.warning(f"Provider token decryption failed: {e}")
        return None
