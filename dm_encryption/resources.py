"""REST API resources for direct conversations.

Message text and the string fields of media metadata are encrypted with the
conversation key before they are stored and decrypted again when a
conversation is read. Rows that predate encryption are returned unchanged;
rows that fail to decrypt show ``[Message could not be decrypted]`` instead of
failing the whole request.

All endpoints require a JWT whose identity is the caller's participant id.
Only the two participants of a conversation may read or post to it.
"""

from datetime import datetime

from flask_restful import Resource, reqparse
from flask_jwt_extended import jwt_required, get_jwt_identity
from sqlalchemy.exc import SQLAlchemyError

from .app import app, db, message_cipher, MAX_MESSAGE_LENGTH
from .batch import decrypt_all
from .errors import InvalidParticipants, InvalidPlaintext
from .metadata import encrypt_fields
from .models import DirectConversation, DirectMessage
from .store import get_or_create_conversation

conversation_parser = reqparse.RequestParser()
conversation_parser.add_argument(
    "peer", required=True, location="json", help="Peer is required."
)

message_parser = reqparse.RequestParser()
message_parser.add_argument(
    "content", required=True, location="json", help="Content is required."
)
message_parser.add_argument("media_metadata", type=dict, location="json")


def load_conversation(conversation_id: str, user_id: str):
    """Return ``(conversation, None)`` or ``(None, (body, status))``."""
    conversation = db.session.get(DirectConversation, conversation_id)
    if conversation is None:
        return None, ({"message": "Conversation not found."}, 404)
    if not conversation.has_participant(user_id):
        return None, ({"message": "Forbidden"}, 403)
    return conversation, None


class Conversations(Resource):
    """Open a direct conversation with another participant."""

    @jwt_required()
    def post(self):
        """Return the caller's conversation with ``peer``, creating it if needed."""
        data = conversation_parser.parse_args()
        uid = get_jwt_identity()
        try:
            conversation, created = get_or_create_conversation(uid, data["peer"])
        except InvalidParticipants:
            return {"message": "Invalid peer."}, 400
        except SQLAlchemyError:
            app.logger.exception("Failed to create conversation")
            db.session.rollback()
            return {"message": "Failed to create conversation."}, 500
        body = {"id": conversation.id, "participants": conversation.participant_ids}
        return body, 201 if created else 200


class ConversationMessages(Resource):
    """List or send messages in one conversation."""

    @jwt_required()
    def get(self, conversation_id):
        """Return the conversation's messages decrypted, oldest first."""
        conversation, error = load_conversation(conversation_id, get_jwt_identity())
        if error:
            return error
        rows = (
            DirectMessage.query.filter_by(conversation_id=conversation.id)
            .order_by(DirectMessage.created_at.asc())
            .all()
        )
        messages = decrypt_all(
            [row.to_dict() for row in rows],
            conversation.participant_ids,
            message_cipher,
        )
        return {"messages": messages}

    @jwt_required()
    def post(self, conversation_id):
        """Encrypt and store a new message."""
        uid = get_jwt_identity()
        conversation, error = load_conversation(conversation_id, uid)
        if error:
            return error

        data = message_parser.parse_args()
        content = data["content"]
        metadata = data.get("media_metadata")
        if isinstance(content, str) and len(content) > MAX_MESSAGE_LENGTH:
            return {"message": "Message too long."}, 400

        participants = conversation.participant_ids
        try:
            encrypted_content = message_cipher.encrypt(content, participants)
        except InvalidPlaintext:
            return {"message": "Content must be a non-empty string."}, 400
        encrypted_metadata = encrypt_fields(metadata, participants, message_cipher)

        message = DirectMessage(
            conversation_id=conversation.id,
            sender_id=uid,
            content=encrypted_content,
            media_metadata=encrypted_metadata,
        )
        conversation.last_message_at = datetime.utcnow()
        try:
            db.session.add(message)
            db.session.commit()
        except SQLAlchemyError:
            app.logger.exception("Failed to store message")
            db.session.rollback()
            return {"message": "Failed to store message."}, 500

        app.logger.info(
            "Stored message %s in conversation %s", message.id, conversation.id
        )
        body = message.to_dict()
        body["content"] = content
        body["media_metadata"] = metadata
        return body, 201


class ConversationRead(Resource):
    """Mark the peer's messages in a conversation as read."""

    @jwt_required()
    def post(self, conversation_id):
        uid = get_jwt_identity()
        conversation, error = load_conversation(conversation_id, uid)
        if error:
            return error
        updated = (
            DirectMessage.query.filter(
                DirectMessage.conversation_id == conversation.id,
                DirectMessage.sender_id != uid,
                DirectMessage.read_at.is_(None),
            ).update({"read_at": datetime.utcnow()}, synchronize_session=False)
        )
        db.session.commit()
        return {"updated": updated}
