"""Pydantic v2 models for the mailbox domain.

Provides frozen (immutable) models for the inbox entries, threads, and
headers observed by the reply engine, and for the reply it composes.
"""

from pydantic import BaseModel, ConfigDict

DEFAULT_SUBJECT = "No Subject"


class InboxEntry(BaseModel):
    """One message stub surfaced by the inbox listing."""

    model_config = ConfigDict(frozen=True)

    message_id: str
    thread_id: str


class ThreadSummary(BaseModel):
    """A conversation thread as seen at inspection time."""

    model_config = ConfigDict(frozen=True)

    thread_id: str
    message_count: int


class MessageHeaders(BaseModel):
    """The headers of an original message needed to answer it.

    ``from_address`` and ``to_address`` are empty strings when the message
    does not carry the header; the reply engine treats such a message as
    unreplyable.
    """

    model_config = ConfigDict(frozen=True)

    message_id: str
    thread_id: str
    subject: str = DEFAULT_SUBJECT
    from_address: str = ""
    to_address: str = ""

    def missing_headers(self) -> list[str]:
        """Return the names of required headers that are absent."""
        missing: list[str] = []
        if not self.from_address.strip():
            missing.append("From")
        if not self.to_address.strip():
            missing.append("To")
        return missing


class ReplyDraft(BaseModel):
    """An acknowledgment reply ready to be rendered and sent.

    ``in_reply_to`` and ``references`` both carry the original thread's
    stable identifier in angle brackets so mail clients thread the reply.
    """

    model_config = ConfigDict(frozen=True)

    thread_id: str
    from_header: str
    to: str
    subject: str
    in_reply_to: str
    references: str
    body: str
