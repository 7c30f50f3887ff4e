"""Reply composition and RFC 2822 threading headers.

Provides helpers for:
- Deriving the reply subject and sender identity from the original headers
- Building a ``ReplyDraft`` that threads under the original conversation
- Rendering a draft into raw message bytes for the gateway
"""

from __future__ import annotations

from email.message import EmailMessage
from email.utils import formataddr, getaddresses

from autoreply.config import DEFAULT_REPLY_TEMPLATE
from autoreply.email.models import DEFAULT_SUBJECT, MessageHeaders, ReplyDraft


def reply_subject(subject: str) -> str:
    """Prefix ``subject`` with ``Re: `` unless it already carries one (case-insensitive)."""
    subject = subject.strip() or DEFAULT_SUBJECT
    if subject.lower().startswith("re:"):
        return subject
    return f"Re: {subject}"


def first_address(header_value: str) -> str:
    """Return the first bare address in an address header, or ``""``."""
    for _, addr in getaddresses([header_value]):
        if addr:
            return addr
    return ""


def thread_reference(thread_id: str) -> str:
    """Format a thread ID as a message-id style reference (``<id>``)."""
    return f"<{thread_id}>"


def build_reply_draft(
    headers: MessageHeaders,
    owner_name: str,
    template: str = DEFAULT_REPLY_TEMPLATE,
) -> ReplyDraft:
    """Compose the acknowledgment reply for an original message.

    The reply goes to the original sender and is sent *as* the original
    recipient address, with the owner's display name attached.  Both
    ``In-Reply-To`` and ``References`` point at the thread's stable ID.

    Args:
        headers: Headers of the message being answered.  ``from_address``
            and ``to_address`` must be present.
        owner_name: The mailbox owner's display name.
        template: Body template; ``{owner_name}`` is substituted.

    Returns:
        The composed ``ReplyDraft``.
    """
    sender_addr = first_address(headers.to_address) or headers.to_address.strip()
    reference = thread_reference(headers.thread_id)

    return ReplyDraft(
        thread_id=headers.thread_id,
        from_header=formataddr((owner_name, sender_addr)),
        to=headers.from_address.strip(),
        subject=reply_subject(headers.subject),
        in_reply_to=reference,
        references=reference,
        body=template.format(owner_name=owner_name),
    )


def render_raw_message(draft: ReplyDraft) -> bytes:
    """Render a draft as raw RFC 2822 bytes (plain-text body)."""
    message = EmailMessage()
    message.set_content(draft.body)
    message["From"] = draft.from_header
    message["To"] = draft.to
    message["Subject"] = draft.subject
    message["In-Reply-To"] = draft.in_reply_to
    message["References"] = draft.references
    return message.as_bytes()
