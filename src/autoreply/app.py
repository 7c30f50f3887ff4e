"""Application entry point combining the poll scheduler and the HTTP probes.

Runs the reply scheduler and a small FastAPI server (health, readiness and
Prometheus metrics) concurrently in a single long-running process.

Configures:
- **structlog** with JSON rendering (production) or colored console (development)
- **Sentry** error reporting when ``SENTRY_DSN`` is set
- **Reply ledger** on SQLite, shared by every poll cycle
- **Credential provider** that the scheduler consults before each cycle
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta
from functools import partial
from typing import Any

import structlog
import uvicorn
from fastapi import FastAPI

from autoreply.auth.credentials import CredentialProvider
from autoreply.config import Settings, get_settings, validate_credentials
from autoreply.email.client import GmailGateway
from autoreply.health import register_health_routes
from autoreply.observability.metrics import LEDGER_ENTRIES, setup_metrics
from autoreply.observability.sentry import get_sentry_processor, init_sentry
from autoreply.scheduler import PollScheduler
from autoreply.state.schema import close_ledger_db, open_ledger_db
from autoreply.state.store import ReplyLedger

logger = structlog.get_logger()


def configure_logging(production: bool = False, sentry: bool = False) -> None:
    """Configure structlog for production (JSON) or development (console).

    Production mode (*production=True*): JSON rendering at INFO level.
    Development mode: colored console rendering at DEBUG level.

    Args:
        production: Enable production mode if ``True``.
        sentry: Forward ERROR events to Sentry if ``True``.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
    ]
    if sentry:
        shared_processors.append(get_sentry_processor())
    shared_processors += [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if production:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
        log_level = logging.INFO
    else:
        renderer = structlog.dev.ConsoleRenderer()
        log_level = logging.DEBUG

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(service="autoreply")


def build_scheduler(
    settings: Settings,
    credentials: CredentialProvider,
    ledger: ReplyLedger,
) -> PollScheduler:
    """Create the poll scheduler wired to the Gmail gateway.

    Args:
        settings: Application settings.
        credentials: The credential provider consulted before each cycle.
        ledger: The reply ledger.

    Returns:
        A ``PollScheduler`` ready for ``run_forever``.
    """
    retention = (
        timedelta(days=settings.ledger_retention_days)
        if settings.ledger_retention_days > 0
        else None
    )
    gateway_factory = partial(
        GmailGateway.from_credentials,
        timeout=settings.request_timeout_seconds,
        max_results=settings.max_inbox_results,
    )
    return PollScheduler(
        credentials,
        gateway_factory,
        ledger,
        min_interval=settings.poll_min_seconds,
        max_interval=settings.poll_max_seconds,
        max_concurrency=settings.max_concurrency,
        thread_timeout=settings.thread_timeout_seconds,
        retention=retention,
        engine_options={
            "label_name": settings.label_name,
            "reply_template": settings.reply_template,
            "owner_name_ttl": settings.owner_name_ttl_seconds,
        },
    )


def initialize_services(settings: Settings | None = None) -> dict[str, Any]:
    """Set up all shared services for the application.

    Opens the ledger database, creates the credential provider and the
    poll scheduler.

    Args:
        settings: Application settings.  If ``None``, ``get_settings()`` is used.

    Returns:
        A dict of initialized service instances keyed by name.
    """
    if settings is None:
        settings = get_settings()

    services: dict[str, Any] = {}

    ledger_conn = open_ledger_db(settings.ledger_db_path)
    services["ledger_conn"] = ledger_conn

    ledger = ReplyLedger(ledger_conn)
    services["ledger"] = ledger
    LEDGER_ENTRIES.set(ledger.count())
    logger.info("Reply ledger opened", path=str(settings.ledger_db_path), entries=ledger.count())

    credentials = CredentialProvider(settings.gmail_token_path)
    services["credentials"] = credentials

    services["scheduler"] = build_scheduler(settings, credentials, ledger)
    services["_settings"] = settings

    return services


def shutdown_services(services: dict[str, Any]) -> None:
    """Stop the scheduler and close the ledger database."""
    scheduler = services.get("scheduler")
    if scheduler is not None:
        scheduler.stop()
    ledger_conn = services.pop("ledger_conn", None)
    if ledger_conn is not None:
        close_ledger_db(ledger_conn)
        logger.info("Ledger database connection closed")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Lifespan context manager for FastAPI startup and shutdown.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control to the application.
    """
    logger.info("HTTP server starting")
    yield
    # Uvicorn is shutting down; let the scheduler loop end too.
    scheduler = app.state.services.get("scheduler")
    if scheduler is not None:
        scheduler.stop()


def create_app(services: dict[str, Any]) -> FastAPI:
    """Create the FastAPI app exposing health, readiness and metrics.

    Args:
        services: The initialized services dict from ``initialize_services``.

    Returns:
        The configured FastAPI application.
    """
    fastapi_app = FastAPI(title="autoreply", lifespan=lifespan)
    fastapi_app.state.services = services
    register_health_routes(fastapi_app)
    setup_metrics(fastapi_app)
    return fastapi_app


async def main() -> None:
    """Main entry point: run the poll scheduler and HTTP server concurrently.

    1. Configure Sentry and logging
    2. Validate credentials
    3. Initialize services
    4. Run the scheduler (and uvicorn, if enabled) with asyncio.gather
    5. Close the ledger on exit
    """
    settings = get_settings()
    init_sentry(settings.sentry_dsn, production=settings.production)
    configure_logging(production=settings.production, sentry=bool(settings.sentry_dsn))
    logger.info("Application starting")

    validate_credentials(settings)

    services = initialize_services(settings)
    scheduler: PollScheduler = services["scheduler"]

    try:
        tasks_to_run: list[Any] = [scheduler.run_forever()]
        if settings.http_enabled:
            config = uvicorn.Config(
                create_app(services),
                host="0.0.0.0",
                port=settings.http_port,
                log_level="info",
            )
            tasks_to_run.append(uvicorn.Server(config).serve())
        await asyncio.gather(*tasks_to_run)
    finally:
        shutdown_services(services)


def run() -> None:
    """Console-script wrapper around :func:`main`."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    run()
