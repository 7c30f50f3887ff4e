"""Resilient gateway call decorator with tenacity retry.

Retries transient gateway failures 3 times with exponential backoff and
jitter, then logs and re-raises on final failure.  Only idempotent reads
are wrapped; sending a reply is never retried here.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from autoreply.domain.errors import TransientGatewayError

logger = structlog.get_logger()

F = TypeVar("F", bound=Callable[..., Any])

MAX_ATTEMPTS = 3


def log_final_failure(retry_state: RetryCallState) -> None:
    """Log the failure once retries are exhausted.

    Args:
        retry_state: Tenacity retry state with attempt info and exception.
    """
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    api_name = getattr(retry_state.fn, "_api_name", "unknown") if retry_state.fn else "unknown"

    logger.error(
        "Gateway call failed after all retries",
        api_name=api_name,
        attempts=retry_state.attempt_number,
        exception=str(exception),
    )
    if exception is not None:
        raise exception


def _before_sleep_log(retry_state: RetryCallState) -> None:
    """Log a warning before each retry attempt.

    Args:
        retry_state: Tenacity retry state with attempt info.
    """
    api_name = getattr(retry_state.fn, "_api_name", "unknown") if retry_state.fn else "unknown"
    logger.warning(
        "Retrying gateway call",
        api_name=api_name,
        attempt=retry_state.attempt_number,
        wait=retry_state.next_action.sleep if retry_state.next_action else 0,
    )


def resilient_api_call(api_name: str) -> Callable[[F], F]:
    """Create a retry decorator for a gateway read.

    Returns a tenacity retry decorator configured with:
    - 3 attempts maximum
    - Exponential backoff with jitter (1s initial, 30s max, 5s jitter)
    - Retry only on ``TransientGatewayError``
    - Warning log before each retry, error log on final failure
    - Original exception re-raised after exhaustion

    Args:
        api_name: Human-readable name for the call (used in logs).

    Returns:
        A decorator that wraps the function with retry logic.
    """

    def decorator(func: F) -> F:
        func._api_name = api_name  # type: ignore[attr-defined]

        wrapped = retry(
            retry=retry_if_exception_type(TransientGatewayError),
            stop=stop_after_attempt(MAX_ATTEMPTS),
            wait=wait_exponential_jitter(initial=1, max=30, jitter=5),
            before_sleep=_before_sleep_log,
            retry_error_callback=log_final_failure,
            reraise=True,
        )(func)

        return wrapped  # type: ignore[return-value]

    return decorator
