"""Deterministic conversation keys.

A direct conversation's AES key is derived on demand from the identifiers of
its two participants, so no key material is ever stored. The identifiers are
sorted first, which makes the key independent of the order in which callers
pass them.

Derivation steps for participants ``a`` and ``b`` (``low <= high`` after
sorting):

* salt: ``"<namespace>-<low>-<high>"`` encoded as UTF-8
* password: ``"<low>:<high>"`` encoded as UTF-8
* key: PBKDF2-HMAC-SHA256, 100,000 iterations, 32 bytes

Known limitation: the identifiers are the only input. When they are
predictable, confidentiality rests on the derivation formula staying unknown.
Only two-party conversations are supported; group chats would need a
different scheme such as a random group key wrapped per member.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from .errors import InvalidParticipants
from .provider import CipherProvider, default_provider

KEY_NAMESPACE = "conclav-dm"
PBKDF2_ITERATIONS = 100_000
KEY_LENGTH = 32


def sorted_participants(participant_ids) -> tuple[str, str]:
    """Validate ``participant_ids`` and return them in lexicographic order.

    Raises :class:`InvalidParticipants` unless exactly two distinct, non-empty
    string identifiers are supplied.
    """

    if isinstance(participant_ids, (str, bytes)) or not isinstance(
        participant_ids, Sequence
    ):
        raise InvalidParticipants(
            "Exactly 2 participant IDs required for key derivation"
        )
    if len(participant_ids) != 2:
        raise InvalidParticipants(
            "Exactly 2 participant IDs required for key derivation"
        )
    if not all(isinstance(p, str) and p for p in participant_ids):
        raise InvalidParticipants("Participant IDs must be non-empty strings")
    low, high = sorted(participant_ids)
    if low == high:
        raise InvalidParticipants("Participant IDs must be distinct")
    return low, high


def derive_conversation_key(
    participant_ids,
    *,
    provider: CipherProvider = default_provider,
    namespace: str = KEY_NAMESPACE,
) -> bytes:
    """Return the 256-bit AES-GCM key shared by ``participant_ids``.

    The result must stay in memory for the duration of a single operation;
    callers never cache it or pass it to a logger.
    """

    low, high = sorted_participants(participant_ids)
    salt = f"{namespace}-{low}-{high}".encode("utf-8")
    password = f"{low}:{high}".encode("utf-8")
    return provider.pbkdf2_derive(password, salt, PBKDF2_ITERATIONS, KEY_LENGTH)


def get_participant_ids(conversation) -> list[str]:
    """Extract the participant list from a conversation-like value.

    Accepts a list or tuple of identifiers, a mapping holding them under
    ``participants`` or ``participant_ids``, or an object exposing a
    ``participant_ids`` attribute.
    """

    if isinstance(conversation, (list, tuple)):
        return list(conversation)
    if isinstance(conversation, Mapping):
        for key in ("participants", "participant_ids"):
            value = conversation.get(key)
            if isinstance(value, (list, tuple)):
                return list(value)
    else:
        value = getattr(conversation, "participant_ids", None)
        if isinstance(value, (list, tuple)):
            return list(value)
    raise InvalidParticipants(
        "Invalid conversation format - cannot extract participant IDs"
    )
