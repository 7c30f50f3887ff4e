"""Shared pytest fixtures for the autoreply test suite."""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator

import pytest

from autoreply.email.models import InboxEntry, MessageHeaders, ThreadSummary
from autoreply.state.schema import init_ledger_table
from autoreply.state.store import ReplyLedger


class FakeGateway:
    """In-memory mailbox gateway recording every call.

    Threads are registered with :meth:`add_thread`.  ``failures`` maps an
    operation name to an exception raised on each call; ``send_failures``
    maps a thread ID to an exception raised when replying into it.
    """

    def __init__(self, owner_name: str = "Jane Owner") -> None:
        self.owner_name = owner_name
        self.inbox: list[InboxEntry] = []
        self.thread_counts: dict[str, int] = {}
        self.headers: dict[str, MessageHeaders | None] = {}
        self.labels: dict[str, str] = {}
        self.applied: list[tuple[str, str]] = []
        self.sent: list[tuple[str, bytes]] = []
        self.calls: list[str] = []
        self.failures: dict[str, Exception] = {}
        self.send_failures: dict[str, Exception] = {}
        self._lock = threading.Lock()

    def add_thread(
        self,
        thread_id: str,
        *,
        message_id: str | None = None,
        message_count: int = 1,
        subject: str = "Question about your services",
        from_address: str = "Alice Sender <alice@example.com>",
        to_address: str = "owner@example.com",
        headers: MessageHeaders | None | bool = True,
    ) -> InboxEntry:
        message_id = message_id or f"m-{thread_id}"
        entry = InboxEntry(message_id=message_id, thread_id=thread_id)
        self.inbox.append(entry)
        self.thread_counts[thread_id] = message_count
        if headers is True:
            self.headers[message_id] = MessageHeaders(
                message_id=message_id,
                thread_id=thread_id,
                subject=subject,
                from_address=from_address,
                to_address=to_address,
            )
        elif headers is False or headers is None:
            self.headers[message_id] = None
        else:
            self.headers[message_id] = headers
        return entry

    def _record(self, operation: str) -> None:
        with self._lock:
            self.calls.append(operation)
        if operation in self.failures:
            raise self.failures[operation]

    def list_inbox_messages(self) -> list[InboxEntry]:
        self._record("list_inbox_messages")
        return list(self.inbox)

    def get_thread(self, thread_id: str) -> ThreadSummary:
        self._record("get_thread")
        return ThreadSummary(thread_id=thread_id, message_count=self.thread_counts.get(thread_id, 0))

    def get_message_headers(self, message_id: str) -> MessageHeaders | None:
        self._record("get_message_headers")
        return self.headers.get(message_id)

    def send_reply(self, thread_id: str, raw_message: bytes) -> str:
        self._record("send_reply")
        if thread_id in self.send_failures:
            raise self.send_failures[thread_id]
        with self._lock:
            self.sent.append((thread_id, raw_message))
            # The reply joins the thread on the provider side.
            self.thread_counts[thread_id] = self.thread_counts.get(thread_id, 0) + 1
            return f"sent-{len(self.sent)}"

    def ensure_label(self, name: str) -> str:
        self._record("ensure_label")
        with self._lock:
            return self.labels.setdefault(name, f"Label_{len(self.labels) + 1}")

    def apply_label(self, message_id: str, label_id: str) -> None:
        self._record("apply_label")
        with self._lock:
            self.applied.append((message_id, label_id))

    def get_owner_display_name(self) -> str:
        self._record("get_owner_display_name")
        return self.owner_name

    def sent_thread_ids(self) -> list[str]:
        return [thread_id for thread_id, _ in self.sent]


@pytest.fixture
def ledger_conn() -> Iterator[sqlite3.Connection]:
    """In-memory SQLite connection with the ledger table initialized."""
    connection = sqlite3.connect(":memory:", check_same_thread=False)
    init_ledger_table(connection)
    yield connection
    connection.close()


@pytest.fixture
def ledger(ledger_conn: sqlite3.Connection) -> ReplyLedger:
    """ReplyLedger backed by the in-memory connection."""
    return ReplyLedger(ledger_conn)


@pytest.fixture
def gateway() -> FakeGateway:
    """An empty fake mailbox."""
    return FakeGateway()
