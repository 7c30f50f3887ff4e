"""Email domain: mailbox gateway contract, Gmail binding, reply threading, and models."""

from autoreply.email.client import GmailGateway
from autoreply.email.gateway import MailboxGateway
from autoreply.email.models import (
    InboxEntry,
    MessageHeaders,
    ReplyDraft,
    ThreadSummary,
)
from autoreply.email.threading import build_reply_draft, render_raw_message, reply_subject

__all__ = [
    "GmailGateway",
    "InboxEntry",
    "MailboxGateway",
    "MessageHeaders",
    "ReplyDraft",
    "ThreadSummary",
    "build_reply_draft",
    "render_raw_message",
    "reply_subject",
]
