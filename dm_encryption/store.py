"""Persistence boundary used by the migration runner.

:class:`MessageStore` is the small interface the runner needs from whatever
holds conversations and messages. All methods are coroutines so a store can
suspend on I/O.

:class:`SQLMessageStore` implements them over the Flask-SQLAlchemy session,
which must be used inside an application context. Its coroutines never await:
each one runs its blocking session work to completion. Messages gathered into
one migration chunk are therefore written one after another, and the session
is never used by two coroutines at once. The chunk size still bounds how much
work happens between pauses.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .app import db
from .key_derivation import sorted_participants
from .models import DirectConversation, DirectMessage

logger = logging.getLogger(__name__)


@dataclass
class ConversationRecord:
    id: str
    participant_ids: list[str]


@dataclass
class MessageRecord:
    id: str
    content: Optional[str]
    media_metadata: Optional[dict] = None


class MessageStore(Protocol):
    """Operations the migration needs from the persistence layer."""

    async def list_conversations(self) -> list[ConversationRecord]:
        ...

    async def list_messages(self, conversation_id: str) -> list[MessageRecord]:
        ...

    async def get_conversation(self, conversation_id: str) -> ConversationRecord:
        """Return the conversation or raise :class:`LookupError`."""
        ...

    async def update_message(
        self, message_id: str, *, content: Optional[str], media_metadata
    ) -> None:
        """Persist new values or raise; unknown ids raise :class:`LookupError`."""
        ...


def _conversation_record(row: DirectConversation) -> ConversationRecord:
    return ConversationRecord(id=row.id, participant_ids=row.participant_ids)


class SQLMessageStore:
    """:class:`MessageStore` backed by the application database."""

    def __init__(self, session=None):
        self.session = session if session is not None else db.session

    async def list_conversations(self) -> list[ConversationRecord]:
        rows = self.session.query(DirectConversation).order_by(
            DirectConversation.created_at.asc()
        )
        return [_conversation_record(row) for row in rows]

    async def get_conversation(self, conversation_id: str) -> ConversationRecord:
        row = self.session.get(DirectConversation, conversation_id)
        if row is None:
            raise LookupError(f"Conversation {conversation_id} not found")
        return _conversation_record(row)

    async def list_messages(self, conversation_id: str) -> list[MessageRecord]:
        rows = (
            self.session.query(DirectMessage)
            .filter(DirectMessage.conversation_id == conversation_id)
            .order_by(DirectMessage.created_at.asc())
        )
        return [
            MessageRecord(id=m.id, content=m.content, media_metadata=m.media_metadata)
            for m in rows
        ]

    async def update_message(
        self, message_id: str, *, content: Optional[str], media_metadata
    ) -> None:
        msg = self.session.get(DirectMessage, message_id)
        if msg is None:
            raise LookupError(f"Message {message_id} not found")
        msg.content = content
        msg.media_metadata = media_metadata
        try:
            self.session.commit()
        except SQLAlchemyError:
            # Leave the shared session usable for the remaining messages.
            self.session.rollback()
            raise


def get_or_create_conversation(
    user_a_id: str, user_b_id: str
) -> tuple[DirectConversation, bool]:
    """Return the conversation between two users, creating it when missing.

    The second element of the result is ``True`` when a row was inserted.
    Raises :class:`~dm_encryption.errors.InvalidParticipants` for an invalid
    pair.
    """

    low, high = sorted_participants([user_a_id, user_b_id])
    query = DirectConversation.query.filter_by(
        participant_low=low, participant_high=high
    )
    existing = query.first()
    if existing:
        return existing, False

    row = DirectConversation(
        participant_low=low,
        participant_high=high,
        last_message_at=datetime.utcnow(),
    )
    try:
        db.session.add(row)
        db.session.commit()
    except IntegrityError:
        # Another request created the pair first.
        db.session.rollback()
        existing = query.first()
        if existing:
            return existing, False
        raise
    logger.info("Created conversation %s", row.id)
    return row, True
