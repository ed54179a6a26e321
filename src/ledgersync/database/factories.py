"""Database factory functions for creating database instances."""

import os
from pathlib import Path
from typing import Optional

from ledgersync.database.sqlalchemy_db import SQLAlchemyDatabase


def create_sqlite_database(database_path: Optional[str] = None) -> SQLAlchemyDatabase:
    """Create a SQLite database instance.

    Args:
        database_path: Path to SQLite database file. If None, checks LEDGERSYNC_DB_PATH
            environment variable, then defaults to ~/.ledgersync/ledgersync.db

    Returns:
        SQLAlchemyDatabase instance configured for SQLite
    """
    if database_path is None:
        database_path = os.environ.get("LEDGERSYNC_DB_PATH")

    if database_path is None:
        db_dir = Path.home() / ".ledgersync"
        db_dir.mkdir(exist_ok=True)
        database_path = str(db_dir / "ledgersync.db")

    return SQLAlchemyDatabase(f"sqlite:///{database_path}")


def create_database(
    database_url: Optional[str] = None, database_path: Optional[str] = None
) -> SQLAlchemyDatabase:
    """Create a database from a full SQLAlchemy URL, falling back to SQLite.

    LEDGERSYNC_DATABASE_URL takes precedence over the SQLite path settings
    when no explicit URL is given.
    """
    if database_url is None:
        database_url = os.environ.get("LEDGERSYNC_DATABASE_URL")
    if database_url:
        return SQLAlchemyDatabase(database_url)
    return create_sqlite_database(database_path)
