"""Cryptographic primitives used by the message cipher.

Business logic never calls :mod:`cryptography` directly. It goes through a
:class:`CipherProvider` so tests can substitute a deterministic provider and
deployments can swap the backing library without touching the cipher.

The default :class:`CryptographyProvider` uses PBKDF2-HMAC for key derivation
and AES-GCM with a 128-bit tag for authenticated encryption, mirroring the
browser WebCrypto calls that produced the first encrypted messages.
"""

from __future__ import annotations

import os
from typing import Protocol

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


class CipherProvider(Protocol):
    """Capability interface for the primitives the cipher relies on."""

    def random_bytes(self, length: int) -> bytes:
        ...

    def pbkdf2_derive(
        self, password: bytes, salt: bytes, iterations: int, length: int
    ) -> bytes:
        ...

    def aead_encrypt(self, key: bytes, iv: bytes, plaintext: bytes) -> bytes:
        """Return ciphertext with the authentication tag appended."""
        ...

    def aead_decrypt(self, key: bytes, iv: bytes, ciphertext: bytes) -> bytes:
        """Return plaintext or raise when authentication fails."""
        ...


class CryptographyProvider:
    """:class:`CipherProvider` backed by the ``cryptography`` package."""

    def random_bytes(self, length: int) -> bytes:
        return os.urandom(length)

    def pbkdf2_derive(
        self, password: bytes, salt: bytes, iterations: int, length: int
    ) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=length,
            salt=salt,
            iterations=iterations,
        )
        return kdf.derive(password)

    def aead_encrypt(self, key: bytes, iv: bytes, plaintext: bytes) -> bytes:
        # AESGCM always appends a 16 byte tag
        return AESGCM(key).encrypt(iv, plaintext, None)

    def aead_decrypt(self, key: bytes, iv: bytes, ciphertext: bytes) -> bytes:
        # Raises ``cryptography.exceptions.InvalidTag`` on a wrong key or
        # tampered ciphertext.
        return AESGCM(key).decrypt(iv, ciphertext, None)


default_provider = CryptographyProvider()
