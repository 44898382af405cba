"""Log file setup for the direct message service.

Everything goes to one file (``LOG_PATH``, ``/tmp/dm_encryption.log`` by
default) that rolls over at midnight. Settings, all read from the environment:

``LOG_LEVEL``
    Root logger threshold, ``INFO`` unless set.
``LOG_RETENTION_DAYS``
    Rolled-over files to keep (default 7). ``0`` keeps writing to a single
    file forever.
``ENCRYPTED_LOG_KEY``
    Optional base64 encoded 32 byte key. With it each line is sealed with
    AES-GCM and can be read back with :func:`decrypt_log_line`.
``LOGGING_DISABLED``
    ``true`` switches logging off and writes nothing.

Before a record is formatted, bearer tokens, email addresses and
``ENC:v1:`` envelopes are masked. Stored ciphertext that ends up in an error
message is never copied into a log.
"""

from __future__ import annotations

import binascii
import logging
import os
import re
import time
from base64 import b64decode, b64encode
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"
NONCE_LENGTH = 12


class SensitiveDataFilter(logging.Filter):
    """Mask secrets in the rendered message of every record."""

    _rules = (
        (re.compile(r"Bearer\s+[A-Za-z0-9._-]+"), "Bearer [REDACTED]"),
        (re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}"), "[REDACTED_EMAIL]"),
        (re.compile(r"ENC:v1:[A-Za-z0-9+/=:]+"), "ENC:v1:[REDACTED]"),
    )

    def filter(self, record: logging.LogRecord) -> bool:
        original = record.getMessage()
        masked = original
        for pattern, replacement in self._rules:
            masked = pattern.sub(replacement, masked)
        if masked != original:
            record.msg, record.args = masked, ()
        return True


class RetentionFileHandler(TimedRotatingFileHandler):
    """Midnight rotation; a ``backupCount`` of 0 means never rotate."""

    def shouldRollover(self, record: logging.LogRecord) -> bool:
        return self.backupCount > 0 and super().shouldRollover(record)

    def doRollover(self) -> None:
        if self.backupCount > 0:
            super().doRollover()
        else:
            self.rolloverAt = self.computeRollover(int(time.time()))


class EncryptedFileHandler(RetentionFileHandler):
    """:class:`RetentionFileHandler` that writes each line sealed.

    A written line is ``base64(nonce || ciphertext)``. Rotation and locking
    are inherited unchanged; only :meth:`format` differs.
    """

    def __init__(self, *, key: bytes, **kwargs) -> None:
        if not key or len(key) != 32:
            raise ValueError("ENCRYPTED_LOG_KEY must decode to exactly 32 bytes")
        super().__init__(**kwargs)
        self._aesgcm = AESGCM(key)

    def format(self, record: logging.LogRecord) -> str:
        nonce = os.urandom(NONCE_LENGTH)
        sealed = self._aesgcm.encrypt(nonce, super().format(record).encode("utf-8"), None)
        return b64encode(nonce + sealed).decode("ascii")


def decrypt_log_line(line: str, key: bytes) -> str:
    """Return the text of one line written by :class:`EncryptedFileHandler`."""
    data = b64decode(line.strip())
    nonce, sealed = data[:NONCE_LENGTH], data[NONCE_LENGTH:]
    return AESGCM(key).decrypt(nonce, sealed, None).decode("utf-8")


def _log_key() -> bytes | None:
    key_env = os.environ.get("ENCRYPTED_LOG_KEY")
    if not key_env:
        return None
    try:
        return b64decode(key_env, validate=True)
    except binascii.Error as exc:
        raise ValueError("ENCRYPTED_LOG_KEY must be base64 encoded") from exc


def _retention_days() -> int:
    raw = os.environ.get("LOG_RETENTION_DAYS", "7")
    try:
        days = int(raw)
    except ValueError as exc:
        raise ValueError("LOG_RETENTION_DAYS must be an integer") from exc
    if days < 0:
        raise ValueError("LOG_RETENTION_DAYS cannot be negative")
    return days


def _file_handler(path: Path, retention: int, key: bytes | None) -> logging.Handler:
    options = dict(filename=str(path), when="midnight", backupCount=retention)
    if key is None:
        return RetentionFileHandler(**options)
    return EncryptedFileHandler(key=key, **options)


def init_logging() -> None:
    """(Re)configure the root logger from the environment.

    Safe to call more than once; previous root handlers are replaced. Bad
    values raise :class:`ValueError` before the root logger is touched.
    """

    if os.environ.get("LOGGING_DISABLED", "").lower() == "true":
        logging.disable(logging.CRITICAL)
        logging.getLogger().handlers.clear()
        return

    retention = _retention_days()
    key = _log_key()
    level = getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO)

    log_path = Path(os.environ.get("LOG_PATH", "/tmp/dm_encryption.log"))
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = _file_handler(log_path, retention, key)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(SensitiveDataFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(handler)
