"""Prometheus metrics instrumentation for the auto-reply service.

Provides:
- ``setup_metrics(app)``: Attach prometheus-fastapi-instrumentator to a FastAPI app,
  exposing ``/metrics`` with HTTP request duration/count plus custom business metrics.
- ``POLL_CYCLES``: Counter of poll cycles by result (``completed``, ``skipped``, ``failed``).
- ``THREAD_OUTCOMES``: Counter of per-thread engine outcomes.
- ``LEDGER_ENTRIES``: Gauge of rows currently held in the reply ledger.

Business metrics are updated by the scheduler as cycles run.
"""

from __future__ import annotations

from fastapi import FastAPI
from prometheus_client import Counter, Gauge
from prometheus_fastapi_instrumentator import Instrumentator

POLL_CYCLES: Counter = Counter(
    "autoreply_poll_cycles_total",
    "Number of poll cycles by result",
    ["result"],
)

THREAD_OUTCOMES: Counter = Counter(
    "autoreply_thread_outcomes_total",
    "Number of processed inbox threads by outcome",
    ["outcome"],
)

LEDGER_ENTRIES: Gauge = Gauge(
    "autoreply_ledger_entries",
    "Number of threads recorded in the reply ledger",
)


def setup_metrics(app: FastAPI) -> None:
    """Instrument *app* with Prometheus HTTP metrics and expose ``/metrics``.

    Excludes health/ready/metrics endpoints from instrumentation to avoid
    noise in dashboards.

    Args:
        app: The FastAPI application to instrument.
    """
    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        excluded_handlers=["/health", "/ready", "/metrics"],
    ).instrument(app).expose(app, include_in_schema=False, should_gzip=True)
