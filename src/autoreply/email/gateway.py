"""The mailbox operations the reply engine depends on.

Any object satisfying ``MailboxGateway`` can drive the engine; the Gmail
binding lives in :mod:`autoreply.email.client`.  Implementations hold no
state of their own and report failures as
:class:`~autoreply.domain.errors.TransientGatewayError` or
:class:`~autoreply.domain.errors.AuthExpiredError`.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from autoreply.email.models import InboxEntry, MessageHeaders, ThreadSummary


@runtime_checkable
class MailboxGateway(Protocol):
    """Remote mailbox operations used by the reply engine."""

    def list_inbox_messages(self) -> list[InboxEntry]:
        """List message stubs currently in the inbox."""
        ...

    def get_thread(self, thread_id: str) -> ThreadSummary:
        """Return the thread with its current message count."""
        ...

    def get_message_headers(self, message_id: str) -> MessageHeaders | None:
        """Return the reply-relevant headers, or ``None`` if the message has none."""
        ...

    def send_reply(self, thread_id: str, raw_message: bytes) -> str:
        """Send a raw RFC 2822 message into ``thread_id``; return the new message ID."""
        ...

    def ensure_label(self, name: str) -> str:
        """Return the ID of label ``name``, creating it if needed."""
        ...

    def apply_label(self, message_id: str, label_id: str) -> None:
        """Add ``label_id`` to the message."""
        ...

    def get_owner_display_name(self) -> str:
        """Return the mailbox owner's display name."""
        ...
