"""Shared fixtures and helpers for the direct message encryption tests."""

import os
import base64
import hashlib
import tempfile
import pytest
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

# Configure the application before it is imported.
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("DATABASE_URI", "sqlite:///:memory:")
os.environ.setdefault("MIGRATION_BATCH_DELAY", "0")
os.environ.setdefault(
    "LOG_PATH", os.path.join(tempfile.gettempdir(), "dm_encryption_tests.log")
)
os.environ.setdefault("ENCRYPTED_LOG_KEY", base64.b64encode(os.urandom(32)).decode())

from dm_encryption.app import app, db
from dm_encryption.cipher import MessageCipher
from dm_encryption.store import ConversationRecord, MessageRecord

PARTICIPANTS = [
    "a0eebc99-9c0b-4ef8-bb6d-6bb9bd380a11",
    "b0eebc99-9c0b-4ef8-bb6d-6bb9bd380a22",
]


class FakeCipherProvider:
    """Deterministic provider: counter-based IVs and a cheap key derivation.

    AES-GCM itself is real so tampering and wrong keys still fail.
    """

    def __init__(self):
        self.counter = 0
        self.derivations = 0

    def random_bytes(self, length):
        self.counter += 1
        return self.counter.to_bytes(length, "big")

    def pbkdf2_derive(self, password, salt, iterations, length):
        self.derivations += 1
        return hashlib.sha256(salt + b"|" + password).digest()[:length]

    def aead_encrypt(self, key, iv, plaintext):
        return AESGCM(key).encrypt(iv, plaintext, None)

    def aead_decrypt(self, key, iv, ciphertext):
        return AESGCM(key).decrypt(iv, ciphertext, None)


class FakeStore:
    """In-memory :class:`~dm_encryption.store.MessageStore`.

    ``fail_updates`` holds message ids whose write raises, ``fail_listing``
    conversation ids whose message listing raises. ``updates`` records every
    successful write in order.
    """

    def __init__(self):
        self.conversations = {}
        self.messages = {}
        self.fail_updates = set()
        self.fail_listing = set()
        self.fail_conversations = False
        self.updates = []

    def add_conversation(self, conversation_id, participants=PARTICIPANTS):
        self.conversations[conversation_id] = list(participants)
        self.messages.setdefault(conversation_id, [])

    def add_message(self, conversation_id, message_id, content, media_metadata=None):
        self.messages[conversation_id].append(
            MessageRecord(id=message_id, content=content, media_metadata=media_metadata)
        )

    def find(self, message_id):
        for records in self.messages.values():
            for record in records:
                if record.id == message_id:
                    return record
        return None

    async def list_conversations(self):
        if self.fail_conversations:
            raise ConnectionError("database unavailable")
        return [
            ConversationRecord(id=cid, participant_ids=ids)
            for cid, ids in self.conversations.items()
        ]

    async def get_conversation(self, conversation_id):
        if conversation_id not in self.conversations:
            raise LookupError(f"Conversation {conversation_id} not found")
        return ConversationRecord(
            id=conversation_id, participant_ids=self.conversations[conversation_id]
        )

    async def list_messages(self, conversation_id):
        if conversation_id in self.fail_listing:
            raise ConnectionError(f"cannot list {conversation_id}")
        return [
            MessageRecord(id=m.id, content=m.content, media_metadata=m.media_metadata)
            for m in self.messages.get(conversation_id, [])
        ]

    async def update_message(self, message_id, *, content, media_metadata):
        if message_id in self.fail_updates:
            raise RuntimeError(f"write failed for {message_id}")
        record = self.find(message_id)
        if record is None:
            raise LookupError(f"Message {message_id} not found")
        record.content = content
        record.media_metadata = media_metadata
        self.updates.append(message_id)


@pytest.fixture
def participants():
    return list(PARTICIPANTS)


@pytest.fixture
def fake_provider():
    return FakeCipherProvider()


@pytest.fixture
def fast_cipher(fake_provider):
    """Cipher over the fake provider for tests that encrypt many values."""
    return MessageCipher(provider=fake_provider)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def app_ctx():
    """Application context with freshly created tables."""
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app_ctx):
    """Flask test client sharing the in-memory database."""
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield client


def auth_headers(user_id):
    """Return an ``Authorization`` header carrying a JWT for ``user_id``."""
    from flask_jwt_extended import create_access_token

    with app.app_context():
        token = create_access_token(identity=user_id)
    return {"Authorization": f"Bearer {token}"}
