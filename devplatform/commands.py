"""Flask CLI commands.

    flask --app devplatform.app purge-history [--days N]
"""


from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import click
from flask import Flask, current_app
from flask.cli import with_appcontext

from devplatform.repositories import cron_history_repo


logger = logging.getLogger(__name__)


@click.command("purge-history")
@click.option(
    "--days",
    type=click.IntRange(min=1),
    default=None,
    help="Retention in days (defaults to HISTORY_RETENTION_DAYS).",
)
@with_appcontext
def purge_history_command(days: int | None) -> None:
    """Delete cron job history older than the retention window."""
    retention = days or current_app.config["HISTORY_RETENTION_DAYS"]
    cutoff = datetime.now(timezone.utc) - timedelta(days=retention)

    deleted = cron_history_repo.purge_history_before(cutoff)

    logger.info("Purged %d history records older than %s", deleted, cutoff.isoformat())
    click.echo(f"Deleted {deleted} history records older than {retention} days.")


def register_commands(app: Flask) -> None:
    app.cli.add_command(purge_history_command)
