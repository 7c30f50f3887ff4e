"""Domain types and errors for the auto-reply service."""

from autoreply.domain.errors import (
    AuthExpiredError,
    AutoReplyError,
    GatewayError,
    MalformedMessageError,
    PartialSendFailure,
    TransientGatewayError,
    UnauthenticatedError,
)
from autoreply.domain.types import FINAL_OUTCOMES, LedgerStatus, ReplyOutcome, SchedulerState

__all__ = [
    "FINAL_OUTCOMES",
    "AuthExpiredError",
    "AutoReplyError",
    "GatewayError",
    "LedgerStatus",
    "MalformedMessageError",
    "PartialSendFailure",
    "ReplyOutcome",
    "SchedulerState",
    "TransientGatewayError",
    "UnauthenticatedError",
]
