"""
Symmetric encryption for credentials at rest (API keys, OAuth tokens).

Uses Fernet (AES-128-CBC + HMAC-SHA256) with a key derived from
AGENTRELAY_SECRET via PBKDF2. Deterministic derivation means no key
material is stored, only the secret.

Usage:
    cipher = CredentialCipher(config.agent.secret)
    ciphertext = cipher.encrypt("sk-abc123...")
    plaintext = cipher.decrypt(ciphertext)
"""

from __future__ import annotations

import base64
import logging

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger(__name__)

# Fixed salt so the same key is derived on every startup
_SALT = b"agentrelay-credential-encryption-v1"


def derive_fernet_key(secret: str) -> bytes:
    """Derive a 32-byte Fernet key from the app secret via PBKDF2."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=_SALT,
        iterations=480_000,
    )
    return base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))


class CredentialCipher:
    """Encrypts and decrypts stored credentials.

    Without a secret the cipher is a passthrough, so a dev setup works
    without extra configuration.
    """

    def __init__(self, secret: str = "") -> None:
        self._fernet: Fernet | None = None
        if secret:
            self._fernet = Fernet(derive_fernet_key(secret))
        else:
            logger.warning(
                "AGENTRELAY_SECRET not set — credentials will be stored in PLAINTEXT"
            )

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def encrypt(self, plaintext: str) -> str:
        if not self._fernet:
            return plaintext
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a stored value.

        A value written before encryption was enabled fails to decrypt and
        is returned as-is; it is re-encrypted on the next save.
        """
        if not self._fernet:
            return ciphertext
        try:
            return self._fernet.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
        except InvalidToken:
            logger.debug("Decryption failed — treating as legacy plaintext value")
            return ciphertext
