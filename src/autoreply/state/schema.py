"""SQLite schema for the reply ledger."""

from __future__ import annotations

import sqlite3
from pathlib import Path


def init_ledger_table(conn: sqlite3.Connection) -> None:
    """Create the reply_ledger table if it does not already exist.

    One row per handled thread.  ``status`` is ``replied`` or ``skipped``;
    ``reason`` explains a skip (e.g. ``malformed``).  An index on
    ``recorded_at`` backs retention pruning.

    Args:
        conn: An open sqlite3.Connection.
    """
    conn.execute("""
        CREATE TABLE IF NOT EXISTS reply_ledger (
            thread_id TEXT PRIMARY KEY,
            message_id TEXT,
            status TEXT NOT NULL,
            reason TEXT,
            recorded_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
        )
    """)

    conn.execute("CREATE INDEX IF NOT EXISTS idx_ledger_recorded_at ON reply_ledger (recorded_at)")

    conn.commit()


def open_ledger_db(db_path: Path | str) -> sqlite3.Connection:
    """Open (creating if needed) the ledger database with WAL mode.

    The connection is shared across worker threads, so it is opened with
    ``check_same_thread=False``; callers serialize access themselves.

    Args:
        db_path: Path to the SQLite file, or ``":memory:"``.

    Returns:
        An open connection with the ledger table initialized.
    """
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.execute("PRAGMA journal_mode=WAL")
    init_ledger_table(conn)
    return conn


def close_ledger_db(conn: sqlite3.Connection) -> None:
    """Close the ledger database connection."""
    conn.close()
