"""SQLite connection factory shared by broker repositories."""

from __future__ import annotations

import sqlite3
from pathlib import Path

from broker.core.migrations import apply_migrations


def open_database(database_path: Path, *, timeout_seconds: float = 5.0) -> sqlite3.Connection:
    """Migrate and open a connection usable from request worker threads."""
    apply_migrations(database_path)
    connection = sqlite3.connect(
        str(database_path),
        timeout=timeout_seconds,
        check_same_thread=False,
    )
    connection.row_factory = sqlite3.Row
    connection.execute("PRAGMA foreign_keys = ON")
    return connection
