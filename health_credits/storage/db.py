"""
Database connection management.

Provides SQLite connection for data persistence.
"""

import sqlite3
from pathlib import Path


DEFAULT_DB_PATH = "health_credits.db"


def get_connection(db_path: str = DEFAULT_DB_PATH, timeout: float = 5.0) -> sqlite3.Connection:
    """Create and return a SQLite database connection with foreign keys enabled.

    The connection runs in autocommit mode so that transactions are opened
    explicitly with BEGIN IMMEDIATE by the repository.

    Args:
        db_path: Path to SQLite database file
        timeout: Seconds to wait on a locked database before failing

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=timeout, isolation_level=None)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
