"""Message cipher tests.

These exercise the real ``cryptography`` provider end to end: round trips for
many kinds of text, the random IV, key separation between conversations and
the rule that decryption never raises. Run with ``pytest``.
"""

import logging
import re
from base64 import b64decode, b64encode

import pytest

from dm_encryption.cipher import (
    DECRYPTION_FAILED,
    MessageCipher,
    decrypt_message,
    encrypt_message,
)
from dm_encryption.envelope import ENCRYPTED_PREFIX, is_encrypted
from dm_encryption.errors import InvalidParticipants, InvalidPlaintext

OTHER_PARTICIPANTS = [
    "c0eebc99-9c0b-4ef8-bb6d-6bb9bd380a33",
    "d0eebc99-9c0b-4ef8-bb6d-6bb9bd380a44",
]


@pytest.mark.parametrize(
    "plaintext",
    [
        "Hello, this is a secret message!",
        "🔐 Test émojis & spëcial chârs!",
        "你好世界 🌍 مرحبا العالم",
        "   ",
        "Line 1\nLine 2\r\nLine 3\tTabbed",
        "A" * 10000,
    ],
)
def test_roundtrip(plaintext, participants):
    encrypted = encrypt_message(plaintext, participants)
    assert encrypted != plaintext
    assert is_encrypted(encrypted)
    assert decrypt_message(encrypted, participants) == plaintext


def test_roundtrip_with_reversed_participants():
    """The key does not depend on the order of the participant ids."""
    encrypted = encrypt_message("Test message", ["uuid-1", "uuid-2"])
    assert decrypt_message(encrypted, ["uuid-2", "uuid-1"]) == "Test message"


def test_same_plaintext_encrypts_differently(participants):
    """A fresh IV per call makes every envelope unique."""
    first = encrypt_message("Same message", participants)
    second = encrypt_message("Same message", participants)
    assert first != second
    assert decrypt_message(first, participants) == "Same message"
    assert decrypt_message(second, participants) == "Same message"


def test_wrong_participants_get_sentinel(participants):
    encrypted = encrypt_message("Secret", participants)
    result = decrypt_message(encrypted, OTHER_PARTICIPANTS)
    assert result == DECRYPTION_FAILED
    assert "Secret" not in result


def test_envelope_layout(participants):
    """IV is 12 bytes, ciphertext is plaintext plus a 16 byte tag."""
    encrypted = encrypt_message("test", participants)
    assert encrypted.startswith(ENCRYPTED_PREFIX)
    parts = encrypted[len(ENCRYPTED_PREFIX):].split(":")
    assert len(parts) == 2
    base64_re = re.compile(r"^[A-Za-z0-9+/=]+$")
    assert base64_re.match(parts[0])
    assert base64_re.match(parts[1])
    assert len(b64decode(parts[0])) == 12
    assert len(b64decode(parts[1])) == len(b"test") + 16


def test_plaintext_passthrough(participants):
    """Legacy rows without the prefix are returned unchanged."""
    assert decrypt_message("plain text", participants) == "plain text"
    assert decrypt_message("ENC:wrong:format", participants) == "ENC:wrong:format"


@pytest.mark.parametrize(
    "value",
    [
        "ENC:v1:invalid:format:extra",
        "ENC:v1:aGVsbG8=:aW52YWxpZA==",
        "ENC:v1:",
        "ENC:v1:%%%:%%%",
    ],
)
def test_malformed_envelopes_get_sentinel(value, participants):
    assert decrypt_message(value, participants) == DECRYPTION_FAILED


def test_tampered_ciphertext_gets_sentinel(participants):
    encrypted = encrypt_message("bits", participants)
    iv_b64, ct_b64 = encrypted[len(ENCRYPTED_PREFIX):].split(":")
    ciphertext = bytearray(b64decode(ct_b64))
    ciphertext[0] ^= 0x01
    tampered = f"{ENCRYPTED_PREFIX}{iv_b64}:{b64encode(bytes(ciphertext)).decode()}"
    assert decrypt_message(tampered, participants) == DECRYPTION_FAILED


def test_truncated_ciphertext_gets_sentinel(participants):
    encrypted = encrypt_message("a longer message body", participants)
    iv_b64, ct_b64 = encrypted[len(ENCRYPTED_PREFIX):].split(":")
    truncated = b64encode(b64decode(ct_b64)[:-4]).decode()
    assert (
        decrypt_message(f"{ENCRYPTED_PREFIX}{iv_b64}:{truncated}", participants)
        == DECRYPTION_FAILED
    )


def test_decrypt_with_invalid_participants_gets_sentinel(participants):
    encrypted = encrypt_message("hello", participants)
    assert decrypt_message(encrypted, ["only-one"]) == DECRYPTION_FAILED


@pytest.mark.parametrize("plaintext", ["", None, 42, b"bytes"])
def test_encrypt_rejects_invalid_plaintext(plaintext, participants):
    with pytest.raises(InvalidPlaintext):
        encrypt_message(plaintext, participants)


@pytest.mark.parametrize("ids", [[], ["only-one"], ["a", "a"], ["a", "b", "c"]])
def test_encrypt_rejects_invalid_participants(ids):
    with pytest.raises(InvalidParticipants):
        encrypt_message("test", ids)


def test_injected_provider_controls_iv_and_key(fake_provider, participants):
    """With a deterministic provider the envelope is fully predictable."""
    cipher = MessageCipher(provider=fake_provider)
    first = cipher.encrypt("hello", participants)
    iv_b64 = first[len(ENCRYPTED_PREFIX):].split(":")[0]
    assert b64decode(iv_b64) == (1).to_bytes(12, "big")
    assert cipher.decrypt(first, participants) == "hello"
    # One derivation per encrypt and per decrypt: keys are never cached.
    assert fake_provider.derivations == 2


def test_providers_are_not_interchangeable(fake_provider, participants):
    """Envelopes from a different key derivation cannot be read."""
    encrypted = MessageCipher(provider=fake_provider).encrypt("hello", participants)
    assert MessageCipher().decrypt(encrypted, participants) == DECRYPTION_FAILED


def test_namespace_separates_keys(participants):
    encrypted = MessageCipher(namespace="other-app").encrypt("hello", participants)
    assert decrypt_message(encrypted, participants) == DECRYPTION_FAILED


def test_malformed_envelope_logs_warning_with_type_only(participants, caplog):
    caplog.set_level(logging.WARNING, logger="dm_encryption.cipher")
    assert decrypt_message("ENC:v1:%%%:%%%", participants) == DECRYPTION_FAILED
    assert [r.levelname for r in caplog.records] == ["WARNING"]
    assert caplog.records[0].getMessage().endswith("MalformedEnvelope")
    assert caplog.records[0].exc_info is None


def test_wrong_pair_arity_logs_warning(participants, caplog):
    caplog.set_level(logging.WARNING, logger="dm_encryption.cipher")
    encrypted = encrypt_message("hello", participants)
    assert decrypt_message(encrypted, ["a", "b", "c"]) == DECRYPTION_FAILED
    assert caplog.records[0].getMessage().endswith("InvalidParticipants")
