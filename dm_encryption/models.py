"""SQLAlchemy models for direct conversations.

A :class:`DirectConversation` always has exactly two participants, stored in
sorted order so a pair maps to a single row. :class:`DirectMessage` holds the
message body in ``content`` either as legacy plaintext or as an encrypted
envelope (``ENC:v1:...``); the string values of ``media_metadata`` follow the
same rule.
"""

from .app import db
from datetime import datetime
import uuid


def _new_id() -> str:
    return str(uuid.uuid4())


class DirectConversation(db.Model):
    """Conversation between exactly two participants."""

    __tablename__ = "direct_conversation"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    # Participant identifiers ordered so that ``participant_low`` sorts first.
    participant_low = db.Column(db.String(64), nullable=False, index=True)
    participant_high = db.Column(db.String(64), nullable=False, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    last_message_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    __table_args__ = (
        db.UniqueConstraint(
            "participant_low", "participant_high", name="uix_conversation_pair"
        ),
    )

    @property
    def participant_ids(self) -> list[str]:
        return [self.participant_low, self.participant_high]

    def has_participant(self, participant_id: str) -> bool:
        return participant_id in (self.participant_low, self.participant_high)


class DirectMessage(db.Model):
    """A message in a :class:`DirectConversation`."""

    __tablename__ = "direct_message"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    conversation_id = db.Column(
        db.String(36),
        db.ForeignKey("direct_conversation.id"),
        nullable=False,
        index=True,
    )
    sender_id = db.Column(db.String(64), nullable=False)
    # Nullable because media-only messages may carry no text.
    content = db.Column(db.Text)
    # Flat map describing an attached file, e.g. ``{"filename": ..., "size": ...}``.
    media_metadata = db.Column(db.JSON)
    created_at = db.Column(
        db.DateTime, nullable=False, default=datetime.utcnow, index=True
    )
    read_at = db.Column(db.DateTime)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "sender_id": self.sender_id,
            "content": self.content,
            "media_metadata": self.media_metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "read_at": self.read_at.isoformat() if self.read_at else None,
        }
