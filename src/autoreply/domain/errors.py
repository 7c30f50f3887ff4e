"""Domain-specific exception classes for the auto-reply service."""


class AutoReplyError(Exception):
    """Base class for all domain errors in the auto-reply service."""


class UnauthenticatedError(AutoReplyError):
    """Raised when no usable mailbox credential is available."""


class GatewayError(AutoReplyError):
    """Base class for failures reported by a mailbox gateway.

    Attributes:
        operation: The gateway operation that failed (e.g. ``send_reply``).
    """

    def __init__(self, operation: str, detail: str = "") -> None:
        self.operation = operation
        self.detail = detail
        message = f"{operation} failed"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class TransientGatewayError(GatewayError):
    """Network, rate-limit or server-side failure.  Retry on a later cycle."""


class AuthExpiredError(GatewayError):
    """The credential was rejected or could not be refreshed."""


class MalformedMessageError(AutoReplyError):
    """Raised when a message lacks a header required to reply to it.

    Attributes:
        message_id: The provider message ID.
        missing: Names of the missing headers.
    """

    def __init__(self, message_id: str, missing: list[str]) -> None:
        self.message_id = message_id
        self.missing = missing
        super().__init__(f"Message {message_id} is missing {', '.join(missing)}")


class PartialSendFailure(AutoReplyError):
    """The reply was sent but the follow-up labeling failed.

    Attributes:
        thread_id: The thread that received the reply.
        sent_message_id: ID of the reply that went out.
    """

    def __init__(self, thread_id: str, sent_message_id: str, cause: Exception) -> None:
        self.thread_id = thread_id
        self.sent_message_id = sent_message_id
        self.cause = cause
        super().__init__(f"Reply {sent_message_id} sent in {thread_id} but labeling failed: {cause}")
