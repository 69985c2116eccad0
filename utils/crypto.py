# -------------------------------------------------------------------
#  🔐  utils/crypto.py  – authenticated encryption for API tokens at rest
# -------------------------------------------------------------------
"""Linked-account tokens are Fernet-encrypted (AES-128-CBC + HMAC-SHA256)
before they are written to the account store.  The key is read from the
``COPY_MASTER_KEY`` environment variable; generate one with
``TokenCipher.generate_key()``."""
from __future__ import annotations
import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

__all__ = ["TokenCipher", "TokenDecryptError"]


class TokenDecryptError(ValueError):
    """Stored token could not be authenticated with the current key."""


class TokenCipher:
    def __init__(self, key: Optional[str] = None):
        self.key = key or os.getenv("COPY_MASTER_KEY")

    def get_cipher(self) -> Fernet:
        if not self.key:
            raise ValueError("COPY_MASTER_KEY environment variable is not set")
        return Fernet(self.key.encode())

    def encrypt(self, text: str) -> str:
        return self.get_cipher().encrypt(text.encode()).decode()

    def decrypt(self, token: str) -> str:
        try:
            return self.get_cipher().decrypt(token.encode()).decode()
        except InvalidToken as exc:
            raise TokenDecryptError("stored token failed authentication (wrong key or tampered)") from exc

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()
