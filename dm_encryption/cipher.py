"""Encrypt and decrypt individual direct message strings.

:class:`MessageCipher` turns a plaintext into an envelope string (see
:mod:`dm_encryption.envelope`) using the conversation key from
:mod:`dm_encryption.key_derivation`. A fresh random IV is drawn for every
call, so encrypting the same text twice yields two different envelopes.

Decryption is deliberately forgiving. Values without the envelope prefix are
returned unchanged so messages stored before encryption keep rendering, and
any failure to decrypt an envelope (wrong key, tampering, truncation,
malformed encoding) yields :data:`DECRYPTION_FAILED` instead of an exception.
A message list therefore never breaks because of one bad row.
"""

from __future__ import annotations

import logging

from cryptography.exceptions import InvalidTag

from . import envelope
from .errors import InvalidPlaintext
from .key_derivation import KEY_NAMESPACE, derive_conversation_key
from .provider import CipherProvider, default_provider

logger = logging.getLogger(__name__)

DECRYPTION_FAILED = "[Message could not be decrypted]"


class MessageCipher:
    """Conversation-keyed AES-GCM cipher for message strings."""

    def __init__(
        self,
        provider: CipherProvider = default_provider,
        namespace: str = KEY_NAMESPACE,
    ) -> None:
        self.provider = provider
        self.namespace = namespace

    def _key(self, participant_ids) -> bytes:
        return derive_conversation_key(
            participant_ids, provider=self.provider, namespace=self.namespace
        )

    def encrypt(self, plaintext: str, participant_ids) -> str:
        """Return the envelope string for ``plaintext``.

        Raises
        ------
        InvalidPlaintext
            If ``plaintext`` is empty or not a string.
        InvalidParticipants
            If ``participant_ids`` is not a pair of distinct identifiers.
        """

        if not isinstance(plaintext, str) or not plaintext:
            raise InvalidPlaintext("Invalid plaintext message")

        key = self._key(participant_ids)
        iv = self.provider.random_bytes(envelope.IV_LENGTH)
        ciphertext = self.provider.aead_encrypt(key, iv, plaintext.encode("utf-8"))
        return envelope.Envelope(iv=iv, ciphertext=ciphertext).serialize()

    def decrypt(self, value: str, participant_ids) -> str:
        """Return the plaintext behind ``value``.

        Legacy plaintext is passed through untouched. Envelopes that cannot be
        decrypted produce :data:`DECRYPTION_FAILED`; this method never raises.
        """

        if not envelope.is_encrypted(value):
            return value

        try:
            parsed = envelope.parse(value)
            key = self._key(participant_ids)
            plaintext = self.provider.aead_decrypt(key, parsed.iv, parsed.ciphertext)
            return plaintext.decode("utf-8")
        except (InvalidTag, ValueError) as exc:
            # MalformedEnvelope and InvalidParticipants are ValueErrors. Only the
            # exception type is logged; messages may echo input.
            logger.warning("Message could not be decrypted: %s", type(exc).__name__)
            return DECRYPTION_FAILED
        except Exception:
            logger.exception("Unexpected error decrypting message")
            return DECRYPTION_FAILED


default_cipher = MessageCipher()


def encrypt_message(plaintext: str, participant_ids) -> str:
    """Encrypt with the module-level :class:`MessageCipher`."""
    return default_cipher.encrypt(plaintext, participant_ids)


def decrypt_message(value: str, participant_ids) -> str:
    """Decrypt with the module-level :class:`MessageCipher`."""
    return default_cipher.decrypt(value, participant_ids)
