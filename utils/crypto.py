"""
Symmetric encryption for provider tokens at rest
"""

import base64
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from utils.exceptions import CryptoError

_KDF_SALT = b"socialflow.token-vault"
_KDF_INFO = b"provider-token-encryption"


def derive_key(secret: str) -> bytes:
    """Derive a Fernet key from the process-wide secret (same secret, same key)"""
    raw = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=_KDF_SALT,
        info=_KDF_INFO,
    ).derive(secret.encode())
    return base64.urlsafe_b64encode(raw)


class TokenCipher:
    """Fernet wrapper used for every token field stored in the vault"""

    def __init__(self, secret: Optional[str]):
        self._secret = secret
        self._fernet: Optional[Fernet] = None

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            if not self._secret:
                raise CryptoError("ENCRYPTION_KEY is not configured")
            self._fernet = Fernet(derive_key(self._secret))
        return self._fernet

    def encrypt(self, plaintext: str) -> str:
        if plaintext is None:
            raise CryptoError("Cannot encrypt an empty token")
        return self._get_fernet().encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        fernet = self._get_fernet()
        try:
            return fernet.decrypt(ciphertext.encode()).decode()
        except (TypeError, AttributeError, ValueError, InvalidToken) as e:
            raise CryptoError("Stored token could not be decrypted", {"reason": type(e).__name__})
