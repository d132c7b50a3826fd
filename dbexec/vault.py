"""
Decryption of at-rest instance credentials.

Tokens have the form ``ivHex:authTagHex:ciphertextHex`` (AES-256-GCM, key
derived as SHA-256 of the ENCRYPTION_KEY secret). Decryption fails closed:
every problem raises VaultError and no partial plaintext is returned.
"""

from __future__ import annotations

import hashlib
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import VaultError

IV_BYTES = 16
TAG_BYTES = 16


class CredentialVault:
    def __init__(self, secret: Optional[str]):
        self._secret = secret

    def _key(self) -> bytes:
        if not self._secret:
            raise VaultError("ENCRYPTION_KEY environment variable is not set")
        return hashlib.sha256(self._secret.encode("utf-8")).digest()

    def encrypt(self, plaintext: str) -> str:
        key = self._key()
        iv = os.urandom(IV_BYTES)
        sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, token: str) -> str:
        key = self._key()
        parts = token.split(":") if isinstance(token, str) else []
        if len(parts) != 3:
            raise VaultError("Invalid encrypted text format")
        try:
            iv, tag, ciphertext = (bytes.fromhex(p) for p in parts)
        except ValueError:
            raise VaultError("Invalid encrypted text format") from None
        if len(iv) != IV_BYTES or len(tag) != TAG_BYTES:
            raise VaultError("Invalid encrypted text format")

        try:
            plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
        except InvalidTag:
            raise VaultError("Decryption failed: authentication check did not pass") from None
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise VaultError("Decryption failed: plaintext is not valid UTF-8") from None
