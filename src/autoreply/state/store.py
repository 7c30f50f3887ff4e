"""SQLite-backed reply ledger: the dedup record of handled threads.

Accepts a sqlite3.Connection, uses parameterized queries exclusively, and
commits synchronously after writes.
On top of the durable rows the ledger keeps an in-process set of claimed
threads, so that checking and reserving a thread is a single atomic step
for every worker sharing the ledger.
"""

from __future__ import annotations

import sqlite3
import threading
from datetime import UTC, datetime, timedelta
from typing import Any

from autoreply.domain.types import LedgerStatus

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def _now() -> datetime:
    return datetime.now(tz=UTC)


class ReplyLedger:
    """Persist and query which threads have been replied to or skipped.

    Rows are add-only: recording a thread twice keeps the first row.  Rows
    leave the ledger only through :meth:`prune`.

    All access to the shared connection and the claim set happens under
    one lock, which makes :meth:`claim` a compare-and-set: for a thread that
    is neither recorded nor claimed, exactly one concurrent caller wins.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialize with an open database connection.

        Args:
            conn: An open sqlite3.Connection whose database already has the
                  ``reply_ledger`` table (see ``init_ledger_table``).
        """
        self._conn = conn
        self._lock = threading.Lock()
        self._claimed: set[str] = set()

    # ------------------------------------------------------------------
    # Dedup gate
    # ------------------------------------------------------------------

    def _is_recorded(self, thread_id: str) -> bool:
        cursor = self._conn.execute(
            "SELECT 1 FROM reply_ledger WHERE thread_id = ?",
            (thread_id,),
        )
        return cursor.fetchone() is not None

    def has_replied(self, thread_id: str) -> bool:
        """Return ``True`` if the thread is recorded (replied or skipped)."""
        with self._lock:
            return self._is_recorded(thread_id)

    def claim(self, thread_id: str) -> bool:
        """Atomically reserve an unrecorded thread for processing.

        Returns:
            ``True`` for the single caller that obtained the claim;
            ``False`` if the thread is already recorded or claimed.
        """
        with self._lock:
            if thread_id in self._claimed or self._is_recorded(thread_id):
                return False
            self._claimed.add(thread_id)
            return True

    def release(self, thread_id: str) -> None:
        """Drop a claim without recording the thread, so it is retried later."""
        with self._lock:
            self._claimed.discard(thread_id)

    def is_claimed(self, thread_id: str) -> bool:
        """Return ``True`` while a worker holds the claim on ``thread_id``."""
        with self._lock:
            return thread_id in self._claimed

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def _record(
        self,
        thread_id: str,
        status: LedgerStatus,
        message_id: str | None,
        reason: str | None,
    ) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR IGNORE INTO reply_ledger "
                "(thread_id, message_id, status, reason, recorded_at) VALUES (?, ?, ?, ?, ?)",
                (thread_id, message_id, status.value, reason, _now().strftime(_TIMESTAMP_FORMAT)),
            )
            self._conn.commit()
            self._claimed.discard(thread_id)

    def mark_replied(self, thread_id: str, message_id: str | None = None) -> None:
        """Record that a reply was sent in ``thread_id``.  Idempotent.

        Args:
            thread_id: The thread that received the reply.
            message_id: The original message that was answered.
        """
        self._record(thread_id, LedgerStatus.REPLIED, message_id, None)

    def mark_skipped(self, thread_id: str, reason: str, message_id: str | None = None) -> None:
        """Record that ``thread_id`` must never be replied to.  Idempotent.

        Args:
            thread_id: The thread to skip permanently.
            reason: Short machine-readable reason, e.g. ``malformed``.
            message_id: The message that was inspected.
        """
        self._record(thread_id, LedgerStatus.SKIPPED, message_id, reason)

    def prune(self, older_than: timedelta) -> int:
        """Delete rows recorded more than ``older_than`` ago.

        Returns:
            The number of rows removed.
        """
        cutoff = (_now() - older_than).strftime(_TIMESTAMP_FORMAT)
        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM reply_ledger WHERE recorded_at < ?",
                (cutoff,),
            )
            self._conn.commit()
            return cursor.rowcount

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def count(self, status: LedgerStatus | None = None) -> int:
        """Return the number of recorded threads, optionally for one status."""
        with self._lock:
            if status is None:
                cursor = self._conn.execute("SELECT COUNT(*) FROM reply_ledger")
            else:
                cursor = self._conn.execute(
                    "SELECT COUNT(*) FROM reply_ledger WHERE status = ?",
                    (status.value,),
                )
            return int(cursor.fetchone()[0])

    def entries(
        self,
        *,
        status: str | None = None,
        since: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Query ledger rows, newest first.

        Args:
            status: Filter by status (``replied`` or ``skipped``).
            since: Only rows recorded at or after this ISO 8601 timestamp.
            limit: Maximum number of rows to return.

        Returns:
            A list of dicts, one per row.
        """
        conditions: list[str] = []
        params: list[str | int] = []

        if status is not None:
            conditions.append("status = ?")
            params.append(status)

        if since is not None:
            conditions.append("recorded_at >= ?")
            params.append(since)

        where_clause = ""
        if conditions:
            where_clause = "WHERE " + " AND ".join(conditions)

        query = (
            "SELECT thread_id, message_id, status, reason, recorded_at "
            f"FROM reply_ledger {where_clause} ORDER BY recorded_at DESC LIMIT ?"
        )
        params.append(limit)

        with self._lock:
            prev_factory = self._conn.row_factory
            self._conn.row_factory = sqlite3.Row
            try:
                rows = self._conn.execute(query, params).fetchall()
            finally:
                self._conn.row_factory = prev_factory

        return [dict(row) for row in rows]

    def ping(self) -> bool:
        """Return ``True`` if the underlying connection answers a trivial query."""
        try:
            with self._lock:
                self._conn.execute("SELECT 1")
        except sqlite3.Error:
            return False
        return True
