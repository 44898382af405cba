"""Wire format for encrypted values.

An encrypted ``content`` or metadata field is stored as a single string::

    ENC:v1:<base64 iv>:<base64 ciphertext>

``iv`` is the 12 byte AES-GCM nonce and ``ciphertext`` carries the 16 byte
authentication tag at its end. Any string without the exact prefix is legacy
plaintext written before encryption existed.
"""

from __future__ import annotations

import binascii
from base64 import b64decode, b64encode
from dataclasses import dataclass

from .errors import MalformedEnvelope

ENCRYPTION_VERSION = "v1"
ENCRYPTED_PREFIX = f"ENC:{ENCRYPTION_VERSION}:"
IV_LENGTH = 12
TAG_LENGTH = 16


@dataclass(frozen=True)
class Envelope:
    """Decoded components of one encrypted value."""

    iv: bytes
    ciphertext: bytes

    def serialize(self) -> str:
        iv_b64 = b64encode(self.iv).decode("ascii")
        ct_b64 = b64encode(self.ciphertext).decode("ascii")
        return f"{ENCRYPTED_PREFIX}{iv_b64}:{ct_b64}"


def is_encrypted(value) -> bool:
    """Return ``True`` when ``value`` is a string carrying the envelope prefix."""
    return isinstance(value, str) and value.startswith(ENCRYPTED_PREFIX)


def _decode_component(component: str, name: str) -> bytes:
    try:
        return b64decode(component, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedEnvelope(f"Envelope {name} is not valid base64") from exc


def parse(value: str) -> Envelope:
    """Split an envelope string into its IV and ciphertext.

    Raises
    ------
    MalformedEnvelope
        If the prefix is missing, the remainder does not split into exactly
        two non-empty base64 components, or the decoded IV or ciphertext has
        an impossible length.
    """

    if not is_encrypted(value):
        raise MalformedEnvelope("Value is not an encrypted envelope")

    parts = value[len(ENCRYPTED_PREFIX):].split(":")
    if len(parts) != 2 or not all(parts):
        raise MalformedEnvelope("Invalid encrypted message format")

    iv = _decode_component(parts[0], "iv")
    ciphertext = _decode_component(parts[1], "ciphertext")
    if len(iv) != IV_LENGTH:
        raise MalformedEnvelope(f"Envelope iv must be {IV_LENGTH} bytes")
    if len(ciphertext) < TAG_LENGTH:
        raise MalformedEnvelope("Envelope ciphertext is shorter than its tag")
    return Envelope(iv=iv, ciphertext=ciphertext)
