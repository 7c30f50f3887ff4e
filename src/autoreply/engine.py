"""Reply decision engine: decide whether a thread is owed a reply and send it.

``ReplyEngine.process_message`` runs the per-thread algorithm:

1. claim the thread in the ledger (atomic dedup gate)
2. leave threads that already hold more than one message untouched
3. skip messages without ``From`` or ``To`` headers
4. resolve the owner's display name (cached with a TTL)
5. compose and send the threaded acknowledgment
6. apply the auto-reply label (best effort)
7. record the thread in the ledger

Every failure before the send is contained at the thread boundary: the
claim is released and the thread is retried on the next poll cycle.  An
expired credential propagates so the scheduler can pause.  Once a reply
has been sent the claim is kept even if recording it fails.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Any

import structlog

from autoreply.config import DEFAULT_REPLY_TEMPLATE, check_reply_template
from autoreply.domain.errors import AuthExpiredError, MalformedMessageError, PartialSendFailure
from autoreply.domain.types import ReplyOutcome
from autoreply.email.gateway import MailboxGateway
from autoreply.email.models import MessageHeaders
from autoreply.email.threading import build_reply_draft, render_raw_message
from autoreply.state.store import ReplyLedger

logger = structlog.get_logger()

DEFAULT_LABEL_NAME = "Auto-Replied"
DEFAULT_OWNER_NAME_TTL = 3600.0


class ReplyEngine:
    """Decide, compose and send at most one automatic reply per thread.

    The engine is safe to call from several worker threads at once; the
    ledger's claim guarantees a single sender per thread.

    Args:
        gateway: The mailbox operations to act through.
        ledger: The durable record of handled threads.
        label_name: Label applied to every answered message.
        reply_template: Body template with an ``{owner_name}`` placeholder.
        owner_name_ttl: Seconds to reuse a resolved owner name; ``0`` looks
            it up on every reply.
        clock: Monotonic time source, replaceable in tests.
    """

    def __init__(
        self,
        gateway: MailboxGateway,
        ledger: ReplyLedger,
        *,
        label_name: str = DEFAULT_LABEL_NAME,
        reply_template: str = DEFAULT_REPLY_TEMPLATE,
        owner_name_ttl: float = DEFAULT_OWNER_NAME_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._gateway = gateway
        self._ledger = ledger
        self._label_name = label_name
        self._reply_template = check_reply_template(reply_template)
        self._owner_name_ttl = owner_name_ttl
        self._clock = clock

        self._cache_lock = threading.Lock()
        self._owner_name: str | None = None
        self._owner_name_at = 0.0
        self._label_id: str | None = None

    @property
    def gateway(self) -> MailboxGateway:
        return self._gateway

    @property
    def ledger(self) -> ReplyLedger:
        return self._ledger

    # ------------------------------------------------------------------
    # Cached lookups
    # ------------------------------------------------------------------

    def owner_display_name(self) -> str:
        """Return the owner's display name, refreshing it once the TTL lapses."""
        with self._cache_lock:
            cached = self._owner_name
            fresh = (
                cached is not None
                and self._owner_name_ttl > 0
                and self._clock() - self._owner_name_at < self._owner_name_ttl
            )
        if fresh and cached is not None:
            return cached

        name = self._gateway.get_owner_display_name()
        with self._cache_lock:
            self._owner_name = name
            self._owner_name_at = self._clock()
        return name

    def _label_message(self, message_id: str) -> None:
        with self._cache_lock:
            label_id = self._label_id
        if label_id is None:
            label_id = self._gateway.ensure_label(self._label_name)
            with self._cache_lock:
                self._label_id = label_id
        try:
            self._gateway.apply_label(message_id, label_id)
        except Exception:
            # The label may have been deleted remotely; resolve it again next time.
            with self._cache_lock:
                self._label_id = None
            raise

    def invalidate_caches(self) -> None:
        """Forget the cached owner name and label ID."""
        with self._cache_lock:
            self._owner_name = None
            self._owner_name_at = 0.0
            self._label_id = None

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------

    @staticmethod
    def check_headers(message_id: str, headers: MessageHeaders | None) -> MessageHeaders:
        """Return ``headers`` if a reply can be addressed from them.

        Raises:
            MalformedMessageError: If the headers, ``From`` or ``To`` are absent.
        """
        if headers is None:
            raise MalformedMessageError(message_id, ["headers"])
        missing = headers.missing_headers()
        if missing:
            raise MalformedMessageError(message_id, missing)
        return headers

    def process_message(self, thread_id: str, message_id: str) -> ReplyOutcome:
        """Reply to ``message_id`` if its thread is still owed a reply.

        Args:
            thread_id: The conversation the message belongs to.
            message_id: The inbox message to answer.

        Returns:
            The ``ReplyOutcome`` for this thread.

        Raises:
            AuthExpiredError: If the credential was rejected.  The thread is
                left unrecorded so it is retried once credentials are renewed.
        """
        if not self._ledger.claim(thread_id):
            logger.debug("Thread already handled or in flight", thread_id=thread_id)
            return ReplyOutcome.ALREADY_CLAIMED

        log = logger.bind(thread_id=thread_id, message_id=message_id)
        try:
            return self._reply(thread_id, message_id, log)
        except AuthExpiredError:
            self._ledger.release(thread_id)
            log.warning("Credential expired while processing thread")
            raise
        except Exception:
            self._ledger.release(thread_id)
            log.exception("Failed to process thread, will retry next cycle")
            return ReplyOutcome.FAILED

    def _reply(self, thread_id: str, message_id: str, log: Any) -> ReplyOutcome:
        thread = self._gateway.get_thread(thread_id)
        if thread.message_count > 1:
            log.info("Thread already has a reply, skipping", message_count=thread.message_count)
            self._ledger.release(thread_id)
            return ReplyOutcome.ALREADY_ANSWERED

        try:
            headers = self.check_headers(message_id, self._gateway.get_message_headers(message_id))
        except MalformedMessageError as exc:
            log.info("Message cannot be replied to, skipping", missing=exc.missing)
            self._ledger.mark_skipped(thread_id, "malformed", message_id)
            return ReplyOutcome.MALFORMED

        owner_name = self.owner_display_name()
        draft = build_reply_draft(headers, owner_name, self._reply_template)
        sent_id = self._gateway.send_reply(thread_id, render_raw_message(draft))
        log.info("Reply sent", sent_message_id=sent_id, to=draft.to)
        return self._after_send(thread_id, message_id, sent_id, log)

    def _after_send(
        self, thread_id: str, message_id: str, sent_id: str, log: Any
    ) -> ReplyOutcome:
        # Nothing past this point may release the claim.
        outcome = ReplyOutcome.REPLIED
        try:
            self._label_message(message_id)
        except Exception as exc:
            failure = PartialSendFailure(thread_id, sent_id, exc)
            log.warning("Reply sent but labeling failed", error=str(failure))
            outcome = ReplyOutcome.REPLIED_UNLABELED

        try:
            self._ledger.mark_replied(thread_id, message_id)
        except Exception:
            log.exception("Reply sent but not recorded, thread stays claimed")
        return outcome
