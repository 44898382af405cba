"""Administrative commands for the plaintext-to-encrypted migration.

Registered on the Flask CLI as the ``encryption`` group::

    flask --app dm_encryption.app encryption status
    flask --app dm_encryption.app encryption migrate --batch-size 50
    flask --app dm_encryption.app encryption migrate-conversation <id>

Each command prints its report as JSON and exits with status 1 when the report
contains errors. ``migrate`` can be interrupted with Ctrl+C; the current chunk
finishes and the partial report is printed.
"""

import asyncio
import json
import signal
import sys

import click
from flask.cli import AppGroup

from .errors import InvalidParticipants
from .migration import MigrationRunner
from .store import SQLMessageStore

encryption_cli = AppGroup("encryption", help="Direct message encryption tools.")


def _runner() -> MigrationRunner:
    from .app import MIGRATION_BATCH_DELAY, MIGRATION_BATCH_SIZE, message_cipher

    return MigrationRunner(
        SQLMessageStore(),
        message_cipher,
        batch_size=MIGRATION_BATCH_SIZE,
        batch_delay=MIGRATION_BATCH_DELAY,
    )


def _echo(data: dict) -> None:
    click.echo(json.dumps(data, indent=2))


async def _migrate_until_interrupted(runner: MigrationRunner, batch_size):
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.set)
        handler_installed = True
    except (NotImplementedError, RuntimeError):
        # Platforms or threads without signal support run uninterruptible.
        handler_installed = False
    try:
        return await runner.migrate_all(batch_size, cancel_event=cancel)
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)


@encryption_cli.command("status")
def status_command():
    """Report how many messages are still stored in plaintext."""
    status = asyncio.run(_runner().check_status())
    _echo(status.to_dict())


@encryption_cli.command("migrate")
@click.option("--batch-size", type=click.IntRange(min=1), default=None)
@click.option("--dry-run", is_flag=True, help="Only report what would change.")
def migrate_command(batch_size, dry_run):
    """Encrypt every plaintext direct message."""
    runner = _runner()
    if dry_run:
        _echo(asyncio.run(runner.check_status()).to_dict())
        return
    report = asyncio.run(_migrate_until_interrupted(runner, batch_size))
    _echo(report.to_dict())
    if report.errors:
        sys.exit(1)


@encryption_cli.command("migrate-conversation")
@click.argument("conversation_id")
def migrate_conversation_command(conversation_id):
    """Encrypt the plaintext messages of one conversation."""
    try:
        report = asyncio.run(_runner().migrate_conversation(conversation_id))
    except (LookupError, InvalidParticipants) as exc:
        raise click.ClickException(str(exc)) from exc
    _echo(report.to_dict())
    if report.errors:
        sys.exit(1)
