"""Field-level encryption for media metadata.

Media messages carry a flat metadata map (original filename, size, MIME type
and so on). The binary itself lives in access-controlled storage, so only the
string fields need protecting. Non-empty string values are encrypted; numbers,
booleans, lists, nested maps, ``None`` and blank strings pass through as-is.
"""

from __future__ import annotations

from .cipher import MessageCipher, default_cipher
from .envelope import is_encrypted


def encrypt_fields(metadata, participant_ids, cipher: MessageCipher = default_cipher):
    """Return a copy of ``metadata`` with its string values encrypted.

    ``None`` and other non-mapping inputs are returned unchanged. Values that
    are already envelopes are kept so running this twice does not nest them.
    """

    if not isinstance(metadata, dict):
        return metadata

    encrypted = {}
    for key, value in metadata.items():
        if isinstance(value, str) and value.strip() and not is_encrypted(value):
            encrypted[key] = cipher.encrypt(value, participant_ids)
        else:
            encrypted[key] = value
    return encrypted


def decrypt_fields(metadata, participant_ids, cipher: MessageCipher = default_cipher):
    """Return a copy of ``metadata`` with its envelope values decrypted."""

    if not isinstance(metadata, dict):
        return metadata

    return {
        key: cipher.decrypt(value, participant_ids) if is_encrypted(value) else value
        for key, value in metadata.items()
    }


def has_plaintext_fields(metadata) -> bool:
    """Return ``True`` if ``encrypt_fields`` would change ``metadata``."""
    if not isinstance(metadata, dict):
        return False
    return any(
        isinstance(value, str) and value.strip() and not is_encrypted(value)
        for value in metadata.values()
    )
