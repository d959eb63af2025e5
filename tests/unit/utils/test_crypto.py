"""
Unit tests for token encryption - every stored token depends on it
"""

import pytest

from utils.crypto import TokenCipher, derive_key
from utils.exceptions import CryptoError


class TestTokenCipher:
    """Test symmetric token encryption"""

    def test_round_trip_returns_plaintext(self):
        cipher = TokenCipher("process-secret")

        ciphertext = cipher.encrypt("EAAG-access-token")

        assert ciphertext != "EAAG-access-token"
        assert cipher.decrypt(ciphertext) == "EAAG-access-token"

    def test_same_secret_decrypts_across_instances(self):
        """
        Business Critical: tokens written by one process must be readable after restart
        """
        ciphertext = TokenCipher("process-secret").encrypt("token")

        assert TokenCipher("process-secret").decrypt(ciphertext) == "token"
        assert derive_key("process-secret") == derive_key("process-secret")

    def test_other_secret_cannot_decrypt(self):
        ciphertext = TokenCipher("process-secret").encrypt("token")

        with pytest.raises(CryptoError):
            TokenCipher("another-secret").decrypt(ciphertext)

    def test_missing_secret_raises_crypto_error(self):
        with pytest.raises(CryptoError, match="ENCRYPTION_KEY"):
            TokenCipher(None).encrypt("token")

    def test_malformed_ciphertext_raises_crypto_error(self):
        with pytest.raises(CryptoError):
            TokenCipher("process-secret").decrypt("not-a-fernet-token")
