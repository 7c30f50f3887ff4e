"""Poll scheduler: drive the reply engine at a bounded random interval.

The scheduler alternates between ``IDLE`` and ``POLLING`` forever.  Each
poll cycle checks for a credential, lists the inbox, filters out threads
already in the ledger, and runs the reply engine for every remaining
thread on worker threads, at most ``max_concurrency`` at a time and each
within a wall-clock budget.  Between cycles it sleeps for a delay drawn
uniformly from ``[min_interval, max_interval]``.
"""

from __future__ import annotations

import asyncio
import random
import uuid
from collections.abc import Callable
from datetime import timedelta
from functools import partial
from typing import Any, Protocol

import structlog
from pydantic import BaseModel, Field

from autoreply.domain.errors import AuthExpiredError, GatewayError, UnauthenticatedError
from autoreply.domain.types import FINAL_OUTCOMES, ReplyOutcome, SchedulerState
from autoreply.email.gateway import MailboxGateway
from autoreply.email.models import InboxEntry
from autoreply.engine import ReplyEngine
from autoreply.observability.metrics import LEDGER_ENTRIES, POLL_CYCLES, THREAD_OUTCOMES
from autoreply.state.store import ReplyLedger

logger = structlog.get_logger()

DEFAULT_MIN_INTERVAL = 45.0
DEFAULT_MAX_INTERVAL = 120.0
DEFAULT_MAX_CONCURRENCY = 4
DEFAULT_THREAD_TIMEOUT = 120.0


def _release_slot(
    semaphore: asyncio.Semaphore,
    auth_expired: asyncio.Event,
    worker: asyncio.Future[ReplyOutcome],
) -> None:
    # The flag is set before the slot is handed to the next waiting thread.
    if not worker.cancelled() and isinstance(worker.exception(), AuthExpiredError):
        auth_expired.set()
    semaphore.release()


class CredentialSource(Protocol):
    """What the scheduler needs from the credential collaborator."""

    def get_credentials(self) -> Any | None:
        """Return a usable credential, ``None``, or raise ``UnauthenticatedError``."""
        ...

    def invalidate(self) -> None: ...


class CycleReport(BaseModel):
    """Summary of one poll cycle."""

    cycle_id: str
    skipped: bool = False
    failed: bool = False
    auth_expired: bool = False
    listed: int = 0
    pending: int = 0
    outcomes: dict[str, int] = Field(default_factory=dict)

    def count(self, outcome: ReplyOutcome) -> int:
        return self.outcomes.get(outcome.value, 0)

    @property
    def recorded(self) -> int:
        """Threads this cycle settled in the ledger."""
        return sum(self.count(outcome) for outcome in FINAL_OUTCOMES)


class PollScheduler:
    """Run poll cycles forever at a bounded random interval.

    Args:
        credentials: Supplies the owner's credential, or ``None`` while the
            account is not authenticated.
        gateway_factory: Builds a mailbox gateway from a credential.  Called
            again whenever the credential object changes.
        ledger: The shared reply ledger.
        min_interval: Lower bound, in seconds, of the delay between cycles.
        max_interval: Upper bound, in seconds, of the delay between cycles.
        max_concurrency: Threads processed in parallel within one cycle.
        thread_timeout: Wall-clock budget, in seconds, for one thread (and
            for the inbox listing).
        retention: Ledger rows older than this are pruned each cycle;
            ``None`` keeps them forever.
        engine_options: Keyword arguments forwarded to ``ReplyEngine``.
        rng: Random source for the interval, replaceable in tests.
    """

    def __init__(
        self,
        credentials: CredentialSource,
        gateway_factory: Callable[[Any], MailboxGateway],
        ledger: ReplyLedger,
        *,
        min_interval: float = DEFAULT_MIN_INTERVAL,
        max_interval: float = DEFAULT_MAX_INTERVAL,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        thread_timeout: float = DEFAULT_THREAD_TIMEOUT,
        retention: timedelta | None = None,
        engine_options: dict[str, Any] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        if min_interval <= 0 or min_interval > max_interval:
            msg = f"Invalid poll interval bounds: [{min_interval}, {max_interval}]"
            raise ValueError(msg)
        if max_concurrency < 1:
            msg = "max_concurrency must be at least 1"
            raise ValueError(msg)

        self._credentials = credentials
        self._gateway_factory = gateway_factory
        self._ledger = ledger
        self._min_interval = min_interval
        self._max_interval = max_interval
        self._max_concurrency = max_concurrency
        self._thread_timeout = thread_timeout
        self._retention = retention
        self._engine_options = engine_options or {}
        self._rng = rng or random.Random()

        self._state = SchedulerState.IDLE
        self._current_creds: Any | None = None
        self._engine: ReplyEngine | None = None
        self._stop_event: asyncio.Event | None = None
        self._stopped = False

    @property
    def state(self) -> SchedulerState:
        return self._state

    def next_delay(self) -> float:
        """Draw the delay before the next cycle, uniform over the configured bounds."""
        return self._rng.uniform(self._min_interval, self._max_interval)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def _engine_for(self, creds: Any) -> ReplyEngine:
        if self._engine is None or creds is not self._current_creds:
            gateway = await asyncio.to_thread(self._gateway_factory, creds)
            self._engine = ReplyEngine(gateway, self._ledger, **self._engine_options)
            self._current_creds = creds
            logger.info("Mailbox gateway initialized")
        return self._engine

    def _handle_auth_expired(self) -> None:
        logger.warning("Credential rejected, pausing until it is renewed")
        self._credentials.invalidate()
        if self._engine is not None:
            self._engine.invalidate_caches()
        self._engine = None
        self._current_creds = None

    def pending_entries(self, entries: list[InboxEntry]) -> list[InboxEntry]:
        """Keep the first listed entry per thread, minus threads recorded or still in flight."""
        seen: set[str] = set()
        pending: list[InboxEntry] = []
        for entry in entries:
            if entry.thread_id in seen:
                continue
            seen.add(entry.thread_id)
            if self._ledger.is_claimed(entry.thread_id):
                logger.debug("Thread still in flight, skipping", thread_id=entry.thread_id)
                continue
            if self._ledger.has_replied(entry.thread_id):
                continue
            pending.append(entry)
        return pending

    async def _process(
        self,
        engine: ReplyEngine,
        entry: InboxEntry,
        semaphore: asyncio.Semaphore,
        auth_expired: asyncio.Event,
    ) -> ReplyOutcome:
        await semaphore.acquire()
        if auth_expired.is_set():
            semaphore.release()
            return ReplyOutcome.AUTH_EXPIRED

        worker = asyncio.ensure_future(
            asyncio.to_thread(engine.process_message, entry.thread_id, entry.message_id)
        )
        # The slot is held until the worker thread returns, even past its budget.
        worker.add_done_callback(partial(_release_slot, semaphore, auth_expired))
        try:
            return await asyncio.wait_for(asyncio.shield(worker), timeout=self._thread_timeout)
        except TimeoutError:
            logger.warning(
                "Thread processing exceeded its budget",
                thread_id=entry.thread_id,
                timeout_seconds=self._thread_timeout,
            )
            return ReplyOutcome.TIMED_OUT
        except AuthExpiredError:
            auth_expired.set()
            return ReplyOutcome.AUTH_EXPIRED

    async def run_cycle(self) -> CycleReport:
        """Run one poll cycle.  Never raises for gateway or thread failures.

        Returns:
            A ``CycleReport`` with per-outcome counts.
        """
        report = CycleReport(cycle_id=uuid.uuid4().hex[:12])
        self._state = SchedulerState.POLLING
        structlog.contextvars.bind_contextvars(cycle_id=report.cycle_id)
        try:
            await self._run_cycle(report)
        finally:
            structlog.contextvars.unbind_contextvars("cycle_id")
            self._state = SchedulerState.IDLE

        if report.skipped:
            POLL_CYCLES.labels(result="skipped").inc()
        elif report.failed or report.auth_expired:
            POLL_CYCLES.labels(result="failed").inc()
        else:
            POLL_CYCLES.labels(result="completed").inc()
        return report

    async def _run_cycle(self, report: CycleReport) -> None:
        try:
            creds = await asyncio.to_thread(self._credentials.get_credentials)
        except UnauthenticatedError as exc:
            logger.warning("Credential unavailable, skipping cycle", error=str(exc))
            report.skipped = True
            return
        if creds is None:
            logger.debug("No credential available, skipping cycle")
            report.skipped = True
            return

        engine = await self._engine_for(creds)

        if self._retention is not None:
            pruned = await asyncio.to_thread(self._ledger.prune, self._retention)
            if pruned:
                logger.info("Pruned ledger entries", pruned=pruned)

        try:
            entries = await asyncio.wait_for(
                asyncio.to_thread(engine.gateway.list_inbox_messages),
                timeout=self._thread_timeout,
            )
        except AuthExpiredError:
            report.auth_expired = True
            self._handle_auth_expired()
            return
        except (GatewayError, TimeoutError) as exc:
            logger.warning("Inbox listing failed, retrying next cycle", error=str(exc))
            report.failed = True
            return

        pending = self.pending_entries(entries)
        report.listed = len(entries)
        report.pending = len(pending)
        logger.info("Polled inbox", listed=len(entries), pending=len(pending))

        semaphore = asyncio.Semaphore(self._max_concurrency)
        auth_expired = asyncio.Event()
        outcomes = await asyncio.gather(
            *(self._process(engine, entry, semaphore, auth_expired) for entry in pending)
        )

        for outcome in outcomes:
            report.outcomes[outcome.value] = report.outcomes.get(outcome.value, 0) + 1
            THREAD_OUTCOMES.labels(outcome=outcome.value).inc()
        LEDGER_ENTRIES.set(await asyncio.to_thread(self._ledger.count))

        if auth_expired.is_set():
            report.auth_expired = True
            self._handle_auth_expired()

        if pending:
            logger.info("Poll cycle finished", outcomes=report.outcomes, recorded=report.recorded)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def run_forever(self) -> None:
        """Alternate between polling and sleeping until :meth:`stop` is called."""
        self._stop_event = asyncio.Event()
        if self._stopped:
            self._stop_event.set()
        logger.info(
            "Poll scheduler started",
            min_interval=self._min_interval,
            max_interval=self._max_interval,
            max_concurrency=self._max_concurrency,
        )

        while not self._stop_event.is_set():
            try:
                await self.run_cycle()
            except Exception:
                logger.exception("Poll cycle crashed")

            delay = self.next_delay()
            logger.debug("Next poll scheduled", delay_seconds=round(delay, 1))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            except TimeoutError:
                continue

        logger.info("Poll scheduler stopped")

    def stop(self) -> None:
        """Ask :meth:`run_forever` to return after the current cycle."""
        self._stopped = True
        if self._stop_event is not None:
            self._stop_event.set()
