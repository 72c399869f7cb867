"""
SQLite access for the usage ledger.

A run writes one short transaction per ledger update while `report` may read
the same file, so connections use WAL journaling and wait for locks instead
of failing immediately.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "issue-resolver.db"
LOCK_TIMEOUT_SECONDS = 30.0


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Open the ledger database, creating its directory if needed.

    Args:
        db_path: Path to SQLite database file

    Returns:
        Connection with foreign key constraints enabled
    """
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), timeout=LOCK_TIMEOUT_SECONDS)
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn
