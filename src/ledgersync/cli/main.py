"""Main CLI entry point."""

import logging
from dataclasses import replace

import click

from ledgersync.config import Settings
from ledgersync.database.factories import create_database
from ledgersync.domain.errors import DomainError

# Import and register all commands at module level
from ledgersync.cli.commands import (
    account,
    connection,
    import_cmd,
    jobs,
    sync,
    tenant,
)


def _setup_logging(level: str) -> None:
    """Configure the root logger once per process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


@click.group()
@click.option(
    "--db-path",
    type=click.Path(),
    help="Path to SQLite database file (overrides LEDGERSYNC_DB_PATH environment variable)",
    envvar="LEDGERSYNC_DB_PATH",
)
@click.option(
    "--database-url",
    help="SQLAlchemy database URL (overrides LEDGERSYNC_DATABASE_URL; takes precedence over --db-path)",
    envvar="LEDGERSYNC_DATABASE_URL",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level (overrides LEDGERSYNC_LOG_LEVEL environment variable)",
    envvar="LEDGERSYNC_LOG_LEVEL",
)
@click.pass_context
def cli(ctx, db_path: str | None, database_url: str | None, log_level: str | None):
    """ledgersync - ingest bank transactions into a per-tenant ledger.

    Import delimited files or sync open-banking providers into a canonical,
    deduplicated store, with every run tracked as an auditable job.
    """
    ctx.ensure_object(dict)

    try:
        settings = Settings.from_env()
    except DomainError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)
    settings = replace(
        settings,
        db_path=db_path or settings.db_path,
        database_url=database_url or settings.database_url,
        log_level=(log_level or settings.log_level).upper(),
    )
    ctx.obj["settings"] = settings

    # Initialize database connection only when actually running a command
    # (not when showing help)
    if ctx.invoked_subcommand is not None:
        _setup_logging(settings.log_level)
        db = create_database(database_url=settings.database_url, database_path=settings.db_path)
        db.connect()
        db.initialize_schema()
        ctx.obj["db"] = db
        ctx.call_on_close(db.disconnect)


# Register all commands
tenant.register_commands(cli)
account.register_commands(cli)
connection.register_commands(cli)
import_cmd.register_commands(cli)
sync.register_commands(cli)
jobs.register_commands(cli)


def main():
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
