"""Enumerations shared across the auto-reply service."""

from enum import StrEnum


class ReplyOutcome(StrEnum):
    """Result of processing one inbox entry through the reply engine."""

    REPLIED = "replied"
    REPLIED_UNLABELED = "replied_unlabeled"
    ALREADY_CLAIMED = "already_claimed"
    ALREADY_ANSWERED = "already_answered"
    MALFORMED = "malformed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    AUTH_EXPIRED = "auth_expired"


class LedgerStatus(StrEnum):
    """Why a thread is recorded in the reply ledger."""

    REPLIED = "replied"
    SKIPPED = "skipped"


class SchedulerState(StrEnum):
    """The two states the poll scheduler alternates between."""

    IDLE = "idle"
    POLLING = "polling"


# Outcomes after which the thread is recorded in the ledger.
FINAL_OUTCOMES: frozenset[ReplyOutcome] = frozenset(
    {
        ReplyOutcome.REPLIED,
        ReplyOutcome.REPLIED_UNLABELED,
        ReplyOutcome.MALFORMED,
    }
)
