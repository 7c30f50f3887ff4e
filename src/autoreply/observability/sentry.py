"""Error reporting for the poll loop through Sentry.

ERROR-level structlog events become Sentry events.  Each one is tagged with
the poll ``cycle_id`` and, when the failure happened inside a thread, the
``thread_id`` and ``message_id`` bound by the reply engine, so a failing
conversation can be searched for directly.
"""

from __future__ import annotations

import logging

import sentry_sdk
import structlog
from sentry_sdk.integrations.logging import LoggingIntegration
from structlog_sentry import SentryProcessor

from autoreply import __version__

# Log context keys promoted to searchable Sentry tags.
EVENT_TAG_KEYS: list[str] = ["cycle_id", "thread_id", "message_id"]


def init_sentry(dsn: str, *, production: bool = False) -> None:
    """Initialize the Sentry SDK for the auto-reply service.

    No-op when *dsn* is empty.

    Args:
        dsn: Sentry DSN string.  Empty string disables Sentry.
        production: Report under the ``production`` environment instead of
            ``development``.
    """
    if not dsn:
        return

    sentry_sdk.init(
        dsn=dsn,
        release=f"autoreply@{__version__}",
        environment="production" if production else "development",
        send_default_pii=False,
        integrations=[
            # Events come from the structlog processor only.
            LoggingIntegration(event_level=None, level=None),
        ],
    )


def get_sentry_processor() -> structlog.types.Processor:
    """Return the structlog processor that reports ERROR events to Sentry.

    It must run after ``merge_contextvars`` so the cycle ID is present.
    """
    return SentryProcessor(event_level=logging.ERROR, tag_keys=EVENT_TAG_KEYS)
