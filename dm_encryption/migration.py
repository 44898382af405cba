"""One-time migration of legacy plaintext direct messages.

Messages written before encryption existed hold their text in clear. The
:class:`MigrationRunner` walks every conversation, encrypts the messages that
still hold text or media metadata in clear and writes them back through a
:class:`~dm_encryption.store.MessageStore`. Each message moves from plaintext
to encrypted exactly once. Values already carrying an envelope are left alone,
so the migration can be re-run safely at any time.

Failures are contained:

* a message that cannot be encrypted or written is recorded in the report and
  the remaining messages are still processed;
* a conversation whose messages cannot be listed is recorded and the run moves
  on to the next conversation;
* only failing to list the conversations at all is fatal and propagates.

Within :meth:`MigrationRunner.migrate_all` the messages of a conversation are
processed in chunks of ``batch_size``. Messages inside a chunk are gathered
and overlap wherever the store suspends on I/O. Chunks run one after another
with ``batch_delay`` seconds between them to give the database room to
breathe. An optional :class:`asyncio.Event` cancels the run between chunks.

Example::

    runner = MigrationRunner(SQLMessageStore())
    status = asyncio.run(runner.check_status())
    if status.plaintext_count:
        report = asyncio.run(runner.migrate_all(batch_size=50))
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from typing import Optional

from .cipher import MessageCipher, default_cipher
from .envelope import is_encrypted
from .key_derivation import sorted_participants
from .metadata import encrypt_fields, has_plaintext_fields

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50
DEFAULT_BATCH_DELAY = 0.1


def _plaintext_content(content) -> bool:
    return isinstance(content, str) and bool(content) and not is_encrypted(content)


def needs_encryption(message) -> bool:
    """Return ``True`` when any part of ``message`` is still stored in clear.

    That is non-empty plaintext content or a plaintext string field in
    ``media_metadata``. Media-only messages without content qualify through
    their metadata.
    """
    return _plaintext_content(message.content) or has_plaintext_fields(
        message.media_metadata
    )


def classify(message) -> str:
    """Return ``"plaintext"``, ``"encrypted"`` or ``"empty"`` for ``message``.

    ``empty`` messages hold nothing to protect: no content and no string
    metadata.
    """
    if needs_encryption(message):
        return "plaintext"
    metadata = message.media_metadata
    if is_encrypted(message.content) or (
        isinstance(metadata, dict) and any(is_encrypted(v) for v in metadata.values())
    ):
        return "encrypted"
    return "empty"


@dataclass
class ErrorDetail:
    error: str
    conversation_id: Optional[str] = None
    message_id: Optional[str] = None


@dataclass
class MigrationReport:
    """Counters and error records produced by a migration run."""

    total: int = 0
    encrypted: int = 0
    skipped: int = 0
    error_details: list[ErrorDetail] = field(default_factory=list)
    cancelled: bool = False

    @property
    def errors(self) -> int:
        return len(self.error_details)

    def record_error(
        self,
        error: str,
        *,
        conversation_id: Optional[str] = None,
        message_id: Optional[str] = None,
    ) -> None:
        self.error_details.append(
            ErrorDetail(
                error=error, conversation_id=conversation_id, message_id=message_id
            )
        )

    def merge(self, other: "MigrationReport") -> None:
        """Add the counters and error records of ``other`` to this report."""
        self.total += other.total
        self.encrypted += other.encrypted
        self.skipped += other.skipped
        self.error_details.extend(other.error_details)
        self.cancelled = self.cancelled or other.cancelled

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "encrypted": self.encrypted,
            "skipped": self.skipped,
            "errors": self.errors,
            "error_details": [asdict(detail) for detail in self.error_details],
            "cancelled": self.cancelled,
        }


@dataclass
class ConversationStatus:
    id: str
    total_messages: int
    plaintext_count: int


@dataclass
class MigrationStatus:
    """Dry-run statistics about how much of the corpus is still plaintext."""

    total_conversations: int = 0
    total_messages: int = 0
    encrypted_count: int = 0
    plaintext_count: int = 0
    # Messages with neither content nor string metadata.
    empty_count: int = 0
    conversations_needing_migration: list[ConversationStatus] = field(
        default_factory=list
    )

    @property
    def encrypted_percent(self) -> float:
        if not self.total_messages:
            return 0.0
        return round(self.encrypted_count * 100 / self.total_messages, 1)

    def to_dict(self) -> dict:
        return {
            "total_conversations": self.total_conversations,
            "total_messages": self.total_messages,
            "encrypted_count": self.encrypted_count,
            "plaintext_count": self.plaintext_count,
            "empty_count": self.empty_count,
            "encrypted_percent": self.encrypted_percent,
            "conversations_needing_migration": [
                asdict(conv) for conv in self.conversations_needing_migration
            ],
        }


class MigrationRunner:
    """Encrypt the plaintext messages held by ``store``."""

    def __init__(
        self,
        store,
        cipher: MessageCipher = default_cipher,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay: float = DEFAULT_BATCH_DELAY,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.store = store
        self.cipher = cipher
        self.batch_size = batch_size
        self.batch_delay = batch_delay

    async def check_status(self) -> MigrationStatus:
        """Count encrypted and plaintext messages without writing anything."""
        conversations = await self.store.list_conversations()
        status = MigrationStatus(total_conversations=len(conversations))

        for conversation in conversations:
            try:
                messages = await self.store.list_messages(conversation.id)
            except Exception as exc:
                logger.error(
                    "Error fetching messages for conversation %s: %s",
                    conversation.id,
                    exc,
                )
                continue
            if not messages:
                continue

            kinds = [classify(m) for m in messages]
            plaintext = kinds.count("plaintext")
            status.total_messages += len(messages)
            status.encrypted_count += kinds.count("encrypted")
            status.plaintext_count += plaintext
            status.empty_count += kinds.count("empty")
            if plaintext:
                status.conversations_needing_migration.append(
                    ConversationStatus(
                        id=conversation.id,
                        total_messages=len(messages),
                        plaintext_count=plaintext,
                    )
                )

        logger.info(
            "Migration status: %d conversations, %d messages, %d encrypted "
            "(%.1f%%), %d plaintext, %d empty, %d conversations need migration",
            status.total_conversations,
            status.total_messages,
            status.encrypted_count,
            status.encrypted_percent,
            status.plaintext_count,
            status.empty_count,
            len(status.conversations_needing_migration),
        )
        return status

    async def migrate_conversation(self, conversation_id: str) -> MigrationReport:
        """Encrypt the plaintext messages of a single conversation.

        Failing to load the conversation or its messages raises; failures on
        individual messages are recorded in the returned report.
        """

        logger.info("Migrating conversation %s", conversation_id)
        conversation = await self.store.get_conversation(conversation_id)
        participant_ids = sorted_participants(conversation.participant_ids)
        messages = await self.store.list_messages(conversation_id)

        report = MigrationReport(total=len(messages))
        if not messages:
            logger.info("No messages to migrate in conversation %s", conversation_id)
            return report

        for message in messages:
            await self._encrypt_message(message, participant_ids, report, conversation_id)

        self._log_report(f"Conversation {conversation_id} migration complete", report)
        return report

    async def migrate_all(
        self,
        batch_size: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> MigrationReport:
        """Encrypt every plaintext message of every conversation.

        Parameters
        ----------
        batch_size:
            Messages processed concurrently per chunk. Defaults to the value
            given to the runner.
        cancel_event:
            When set, the run stops before the next chunk and the partial
            report is returned with ``cancelled`` set.
        """

        if batch_size is None:
            batch_size = self.batch_size
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        logger.info("Starting migration of direct messages to encrypted format")
        conversations = await self.store.list_conversations()
        logger.info("Found %d conversations to process", len(conversations))

        report = MigrationReport()
        for conversation in conversations:
            if cancel_event is not None and cancel_event.is_set():
                report.cancelled = True
                break
            conversation_report = MigrationReport()
            try:
                await self._migrate_in_batches(
                    conversation, batch_size, conversation_report, cancel_event
                )
            except Exception as exc:
                logger.error(
                    "Error processing conversation %s: %s", conversation.id, exc
                )
                conversation_report.record_error(
                    str(exc), conversation_id=conversation.id
                )
            report.merge(conversation_report)
            if report.cancelled:
                break

        if report.cancelled:
            logger.warning("Migration cancelled before all conversations were processed")
        self._log_report("Migration complete", report)
        return report

    async def _migrate_in_batches(self, conversation, batch_size, report, cancel_event):
        participant_ids = sorted_participants(conversation.participant_ids)
        messages = await self.store.list_messages(conversation.id)
        if not messages:
            logger.info("No messages in conversation %s", conversation.id)
            return

        report.total += len(messages)
        logger.info(
            "Processing conversation %s with %d messages", conversation.id, len(messages)
        )
        for start in range(0, len(messages), batch_size):
            if cancel_event is not None and cancel_event.is_set():
                report.cancelled = True
                return
            batch = messages[start:start + batch_size]
            logger.info(
                "Encrypting batch %d (%d messages)", start // batch_size + 1, len(batch)
            )
            await asyncio.gather(
                *(
                    self._encrypt_message(m, participant_ids, report, conversation.id)
                    for m in batch
                )
            )
            if start + batch_size < len(messages):
                await asyncio.sleep(self.batch_delay)

    async def _encrypt_message(self, message, participant_ids, report, conversation_id):
        if not needs_encryption(message):
            logger.debug("Message %s needs no encryption, skipping", message.id)
            report.skipped += 1
            return

        try:
            content = message.content
            if _plaintext_content(content):
                content = self.cipher.encrypt(content, participant_ids)
            metadata = encrypt_fields(
                message.media_metadata, participant_ids, self.cipher
            )
            await self.store.update_message(
                message.id, content=content, media_metadata=metadata
            )
        except Exception as exc:
            logger.error("Failed to encrypt message %s: %s", message.id, exc)
            report.record_error(
                str(exc), conversation_id=conversation_id, message_id=message.id
            )
            return

        logger.debug("Message %s encrypted", message.id)
        report.encrypted += 1

    @staticmethod
    def _log_report(title: str, report: MigrationReport) -> None:
        logger.info(
            "%s: %d total, %d encrypted, %d skipped, %d errors",
            title,
            report.total,
            report.encrypted,
            report.skipped,
            report.errors,
        )
        for index, detail in enumerate(report.error_details, start=1):
            logger.info("  %d. %s", index, asdict(detail))
