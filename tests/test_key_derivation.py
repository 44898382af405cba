"""Conversation key derivation tests.

Keys must be a pure function of the participant pair: independent of order,
different for different pairs and rejected for anything but two distinct ids.
"""

import hashlib

import pytest

from dm_encryption.errors import InvalidParticipants
from dm_encryption.key_derivation import (
    KEY_NAMESPACE,
    PBKDF2_ITERATIONS,
    derive_conversation_key,
    get_participant_ids,
    sorted_participants,
)


def test_key_is_256_bits_and_order_independent():
    """Swapping the participants must yield the same 32 byte key."""
    first = derive_conversation_key(["uuid-1", "uuid-2"])
    second = derive_conversation_key(["uuid-2", "uuid-1"])
    assert len(first) == 32
    assert first == second


def test_different_pairs_get_different_keys():
    assert derive_conversation_key(["uuid-1", "uuid-2"]) != derive_conversation_key(
        ["uuid-3", "uuid-4"]
    )


def test_key_matches_documented_pbkdf2_parameters():
    """The derivation is PBKDF2-SHA256 over ``low:high`` salted by namespace."""
    expected = hashlib.pbkdf2_hmac(
        "sha256",
        b"alice:bob",
        f"{KEY_NAMESPACE}-alice-bob".encode(),
        PBKDF2_ITERATIONS,
        32,
    )
    assert derive_conversation_key(["bob", "alice"]) == expected


def test_namespace_changes_the_key(fake_provider):
    default = derive_conversation_key(["a", "b"], provider=fake_provider)
    other = derive_conversation_key(["a", "b"], provider=fake_provider, namespace="x")
    assert default != other


@pytest.mark.parametrize(
    "ids",
    [
        [],
        ["only-one"],
        ["a", "b", "c"],
        ["same", "same"],
        ["a", ""],
        ["a", 7],
        "ab",
        None,
    ],
)
def test_invalid_participants_rejected(ids):
    with pytest.raises(InvalidParticipants):
        sorted_participants(ids)


def test_sorted_participants_orders_lexicographically():
    assert sorted_participants(("b0", "a0")) == ("a0", "b0")


def test_get_participant_ids_accepts_supported_shapes(participants):
    """Lists, mappings and objects with ``participant_ids`` are understood."""

    class Conversation:
        participant_ids = participants

    assert get_participant_ids(participants) == participants
    assert get_participant_ids({"id": "c1", "participants": participants}) == participants
    assert get_participant_ids({"participant_ids": tuple(participants)}) == participants
    assert get_participant_ids(Conversation()) == participants


@pytest.mark.parametrize("value", [{}, None, "invalid", 42])
def test_get_participant_ids_rejects_other_values(value):
    with pytest.raises(InvalidParticipants):
        get_participant_ids(value)
