"""Flask application and global objects for direct message storage.

The application stores two-party conversations and their messages. Message
``content`` and the string fields of ``media_metadata`` are encrypted with the
conversation key before they reach the database and decrypted on the way out
(see :mod:`dm_encryption.resources`). Administrative commands for the one-time
migration of legacy plaintext rows live in :mod:`dm_encryption.cli` and are
exposed as ``flask encryption ...``.

Configuration is read from the environment, optionally populated from a
``.env`` file. ``JWT_SECRET_KEY`` is mandatory; every other setting has a
default suitable for local development.
"""

import os
from flask import Flask
from flask_restful import Api
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_jwt_extended import JWTManager
from dotenv import load_dotenv
import sentry_sdk
from sentry_sdk.integrations.flask import FlaskIntegration

from .cipher import MessageCipher
from .key_derivation import KEY_NAMESPACE

# Load environment variables from a .env file if present so secrets such as
# JWT_SECRET_KEY stay out of source control.
load_dotenv()

# Initialize Sentry for error monitoring when a DSN is provided
sentry_dsn = os.environ.get("SENTRY_DSN")
if sentry_dsn:
    sentry_sdk.init(
        dsn=sentry_dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=1.0,
    )

app = Flask(__name__)
# Initialize application-wide logging before other components.
from .logging_config import init_logging

init_logging()

app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get(
    "DATABASE_URI", "sqlite:///direct_messages.db"
)
app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
_jwt_secret = os.environ.get("JWT_SECRET_KEY")
if not _jwt_secret:
    raise RuntimeError("JWT_SECRET_KEY environment variable not set")
app.config["JWT_SECRET_KEY"] = _jwt_secret
# Let Flask-JWT-Extended's error handlers see authentication errors instead of
# Flask-RESTful turning them into 500 responses.
app.config["PROPAGATE_EXCEPTIONS"] = True

# Number of messages encrypted concurrently per chunk by ``flask encryption
# migrate`` and the pause in seconds between chunks. Both bound the load the
# migration puts on the database.
MIGRATION_BATCH_SIZE = int(os.environ.get("MIGRATION_BATCH_SIZE", "50"))
MIGRATION_BATCH_DELAY = float(os.environ.get("MIGRATION_BATCH_DELAY", "0.1"))
if MIGRATION_BATCH_SIZE < 1:
    raise ValueError("MIGRATION_BATCH_SIZE must be at least 1")
if MIGRATION_BATCH_DELAY < 0:
    raise ValueError("MIGRATION_BATCH_DELAY cannot be negative")

# Longest plaintext accepted by the send endpoint.
MAX_MESSAGE_LENGTH = int(os.environ.get("MAX_MESSAGE_LENGTH", "10000"))

# The namespace is mixed into every conversation key. Changing it makes all
# previously stored envelopes undecryptable.
DM_KEY_NAMESPACE = os.environ.get("DM_KEY_NAMESPACE", KEY_NAMESPACE)
message_cipher = MessageCipher(namespace=DM_KEY_NAMESPACE)

# Initialize database and migration tools
db = SQLAlchemy(app)
migrate = Migrate(app, db)

# Initialize the RESTful API
api = Api(app)

# Initialize JWTManager; the token identity is the caller's participant id.
jwt = JWTManager(app)

# Import resources after initializing app components to avoid circular imports
from .resources import (
    Conversations,
    ConversationMessages,
    ConversationRead,
)
from .cli import encryption_cli

api.add_resource(Conversations, "/api/conversations")
api.add_resource(
    ConversationMessages, "/api/conversations/<string:conversation_id>/messages"
)
api.add_resource(ConversationRead, "/api/conversations/<string:conversation_id>/read")

app.cli.add_command(encryption_cli)
