"""Gmail API binding of the mailbox gateway.

Provides the ``GmailGateway`` class that encapsulates every Gmail and
People API operation the reply engine needs: listing the inbox, counting
thread messages, reading reply headers, sending a threaded reply, and
creating and applying the auto-reply label.  Google client errors are
translated into the domain's transient and auth-expired failures.
"""

from __future__ import annotations

import base64
import socket
from typing import Any

import httplib2  # type: ignore[import-untyped]
import structlog
from google.auth.exceptions import RefreshError, TransportError
from google.oauth2.credentials import Credentials
from googleapiclient.errors import HttpError

from autoreply.auth.credentials import DEFAULT_REQUEST_TIMEOUT, get_gmail_service, get_people_service
from autoreply.domain.errors import AuthExpiredError, GatewayError, TransientGatewayError
from autoreply.email.models import DEFAULT_SUBJECT, InboxEntry, MessageHeaders, ThreadSummary
from autoreply.resilience.retry import resilient_api_call

logger = structlog.get_logger()

DEFAULT_OWNER_NAME = "Unknown User"
DEFAULT_MAX_RESULTS = 500
GMAIL_PAGE_SIZE = 500

# Status codes that mean the credential itself was rejected.
AUTH_STATUS_CODES = frozenset({401})


def translate_error(operation: str, exc: Exception) -> GatewayError:
    """Map a Google client exception onto the gateway error taxonomy.

    Args:
        operation: Gateway operation name, used in the error message.
        exc: The exception raised by the Google client stack.

    Returns:
        An ``AuthExpiredError`` for rejected or unrefreshable credentials,
        otherwise a ``TransientGatewayError``.
    """
    if isinstance(exc, RefreshError):
        return AuthExpiredError(operation, str(exc))
    if isinstance(exc, HttpError):
        status = int(exc.resp.status)
        if status in AUTH_STATUS_CODES:
            return AuthExpiredError(operation, f"HTTP {status}")
        return TransientGatewayError(operation, f"HTTP {status}")
    return TransientGatewayError(operation, f"{type(exc).__name__}: {exc}")


_CLIENT_ERRORS: tuple[type[Exception], ...] = (
    HttpError,
    RefreshError,
    TransportError,
    httplib2.HttpLib2Error,
    socket.timeout,
    OSError,
)


class GmailGateway:
    """Gmail implementation of :class:`~autoreply.email.gateway.MailboxGateway`.

    All methods operate through the provided API service resources.  No
    network calls are made by this class directly; the service objects
    handle transport.  The gateway keeps no state between calls.

    Args:
        service: An authenticated Gmail API v1 service resource.
        people_service: An authenticated People API v1 service resource.
        max_results: Upper bound on inbox entries returned per listing.
    """

    def __init__(
        self,
        service: Any,
        people_service: Any,
        max_results: int = DEFAULT_MAX_RESULTS,
    ) -> None:
        self._service = service
        self._people = people_service
        self._max_results = max_results

    @classmethod
    def from_credentials(
        cls,
        credentials: Credentials,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        max_results: int = DEFAULT_MAX_RESULTS,
    ) -> GmailGateway:
        """Build a gateway whose services share ``credentials``.

        Args:
            credentials: The owner's OAuth2 credentials.
            timeout: Per-request socket timeout in seconds.
            max_results: Upper bound on inbox entries per listing.
        """
        return cls(
            get_gmail_service(credentials, timeout=timeout),
            get_people_service(credentials, timeout=timeout),
            max_results=max_results,
        )

    def _execute(self, operation: str, request: Any) -> dict[str, Any]:
        try:
            result: dict[str, Any] = request.execute()
        except _CLIENT_ERRORS as exc:
            raise translate_error(operation, exc) from exc
        return result

    @resilient_api_call("gmail.messages.list")
    def list_inbox_messages(self) -> list[InboxEntry]:
        """List message stubs in the INBOX label, newest first.

        Follows ``nextPageToken`` until ``max_results`` entries have been
        collected or the listing is exhausted.

        Returns:
            One ``InboxEntry`` per listed message that carries both IDs.
        """
        entries: list[InboxEntry] = []
        page_token: str | None = None

        while len(entries) < self._max_results:
            params: dict[str, Any] = {
                "userId": "me",
                "labelIds": ["INBOX"],
                "maxResults": min(GMAIL_PAGE_SIZE, self._max_results - len(entries)),
            }
            if page_token:
                params["pageToken"] = page_token

            response = self._execute(
                "list_inbox_messages",
                self._service.users().messages().list(**params),
            )
            for stub in response.get("messages", []):
                message_id = stub.get("id")
                thread_id = stub.get("threadId")
                if message_id and thread_id:
                    entries.append(InboxEntry(message_id=message_id, thread_id=thread_id))

            page_token = response.get("nextPageToken")
            if not page_token:
                break

        return entries[: self._max_results]

    @resilient_api_call("gmail.threads.get")
    def get_thread(self, thread_id: str) -> ThreadSummary:
        """Fetch a thread with ``format="minimal"`` and count its messages.

        Args:
            thread_id: The Gmail thread ID.

        Returns:
            A ``ThreadSummary`` with the current message count.
        """
        thread = self._execute(
            "get_thread",
            self._service.users().threads().get(userId="me", id=thread_id, format="minimal"),
        )
        return ThreadSummary(
            thread_id=thread_id,
            message_count=len(thread.get("messages", [])),
        )

    @resilient_api_call("gmail.messages.get")
    def get_message_headers(self, message_id: str) -> MessageHeaders | None:
        """Fetch the Subject, From and To headers of a message.

        Args:
            message_id: The Gmail message ID.

        Returns:
            ``MessageHeaders`` for the message, or ``None`` when the message
            has no payload or no headers at all.
        """
        msg = self._execute(
            "get_message_headers",
            self._service.users()
            .messages()
            .get(
                userId="me",
                id=message_id,
                format="metadata",
                metadataHeaders=["Subject", "From", "To"],
            ),
        )

        payload = msg.get("payload")
        if not payload or not payload.get("headers"):
            return None

        headers = {h["name"].lower(): h.get("value", "") for h in payload["headers"]}

        return MessageHeaders(
            message_id=message_id,
            thread_id=msg.get("threadId", ""),
            subject=headers.get("subject") or DEFAULT_SUBJECT,
            from_address=headers.get("from", ""),
            to_address=headers.get("to", ""),
        )

    def send_reply(self, thread_id: str, raw_message: bytes) -> str:
        """Send a raw message into an existing thread.

        Not retried: a retried send may deliver the reply twice.

        Args:
            thread_id: The Gmail thread the reply belongs to.
            raw_message: The RFC 2822 message bytes.

        Returns:
            The Gmail ID of the sent message.
        """
        encoded = base64.urlsafe_b64encode(raw_message).decode()
        result = self._execute(
            "send_reply",
            self._service.users()
            .messages()
            .send(userId="me", body={"threadId": thread_id, "raw": encoded}),
        )
        return str(result.get("id", ""))

    @resilient_api_call("gmail.labels.list")
    def find_label(self, name: str) -> str | None:
        """Return the ID of the user label called ``name``, if it exists."""
        response = self._execute("find_label", self._service.users().labels().list(userId="me"))
        for label in response.get("labels", []):
            if label.get("name") == name:
                return str(label["id"])
        return None

    def ensure_label(self, name: str) -> str:
        """Return the ID of label ``name``, creating it when missing.

        Creation is idempotent: a 409 conflict (label created concurrently
        or missed by the listing) is resolved by listing again.

        Args:
            name: The label name, e.g. ``Auto-Replied``.

        Returns:
            The Gmail label ID.
        """
        existing = self.find_label(name)
        if existing is not None:
            return existing

        request = self._service.users().labels().create(
            userId="me",
            body={
                "name": name,
                "messageListVisibility": "show",
                "labelListVisibility": "labelShow",
            },
        )
        try:
            created: dict[str, Any] = request.execute()
        except HttpError as exc:
            if int(exc.resp.status) != 409:
                raise translate_error("ensure_label", exc) from exc
            existing = self.find_label(name)
            if existing is None:
                raise TransientGatewayError("ensure_label", f"label {name!r} conflict") from exc
            return existing
        except _CLIENT_ERRORS as exc:
            raise translate_error("ensure_label", exc) from exc

        logger.info("Label created", label_name=name, label_id=created.get("id"))
        return str(created["id"])

    def apply_label(self, message_id: str, label_id: str) -> None:
        """Add ``label_id`` to a message via ``users.messages.modify``."""
        self._execute(
            "apply_label",
            self._service.users()
            .messages()
            .modify(userId="me", id=message_id, body={"addLabelIds": [label_id]}),
        )

    @resilient_api_call("people.get")
    def get_owner_display_name(self) -> str:
        """Return the owner's display name from the People API.

        Returns:
            The first display name on ``people/me``, or ``Unknown User``.
        """
        person = self._execute(
            "get_owner_display_name",
            self._people.people().get(resourceName="people/me", personFields="names"),
        )
        names = person.get("names") or []
        if names and names[0].get("displayName"):
            return str(names[0]["displayName"])
        return DEFAULT_OWNER_NAME
