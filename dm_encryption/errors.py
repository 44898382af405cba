"""Exceptions raised to callers that misuse the encryption API.

Every error derives from :class:`ValueError` so callers that predate these
types keep working. Decryption never raises any of them; see
:meth:`dm_encryption.cipher.MessageCipher.decrypt`.
"""


class DMEncryptionError(ValueError):
    """Base class for caller-misuse errors."""


class InvalidPlaintext(DMEncryptionError):
    """The value handed to ``encrypt`` is empty or not a string."""


class InvalidParticipants(DMEncryptionError):
    """Key derivation needs exactly two distinct participant identifiers."""


class MalformedEnvelope(DMEncryptionError):
    """A string carries the envelope prefix but cannot be parsed."""
