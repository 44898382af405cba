"""Decrypt whole message lists for rendering."""

from __future__ import annotations

from .cipher import MessageCipher, default_cipher
from .metadata import decrypt_fields


def decrypt_all(messages, participant_ids, cipher: MessageCipher = default_cipher):
    """Return ``messages`` with ``content`` and ``media_metadata`` decrypted.

    Each message is a dict; the output keeps the input order and length and
    every other key of a message is copied unchanged. Messages without content
    are passed through as they are. A message that fails to decrypt shows the
    sentinel text instead of aborting the batch.
    """

    if not isinstance(messages, list):
        return messages

    decrypted = []
    for message in messages:
        if not message or not message.get("content"):
            decrypted.append(message)
            continue
        metadata = message.get("media_metadata")
        decrypted.append(
            {
                **message,
                "content": cipher.decrypt(message["content"], participant_ids),
                "media_metadata": (
                    decrypt_fields(metadata, participant_ids, cipher)
                    if metadata
                    else None
                ),
            }
        )
    return decrypted
