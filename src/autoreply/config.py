"""Centralized, typed configuration using pydantic-settings.

Provides a single ``Settings`` class backed by ``.env`` file and environment
variables, a cached ``get_settings()`` accessor, and a ``validate_credentials()``
startup gate that enforces token presence in production mode.

IMPORTANT: This module has ZERO imports from the ``autoreply`` package to
prevent circular imports.  Only stdlib, pydantic, pydantic_settings, and
structlog are used.
"""

from __future__ import annotations

import sys
from functools import lru_cache
from pathlib import Path
from string import Formatter
from typing import Self

import structlog
from pydantic import ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger()

DEFAULT_REPLY_TEMPLATE = "Thank you for contacting {owner_name}. You will be reached shortly."
REPLY_TEMPLATE_FIELDS = frozenset({"owner_name"})


def check_reply_template(template: str) -> str:
    """Return *template* if ``str.format`` can fill it from ``owner_name`` alone.

    Raises:
        ValueError: On malformed braces or any placeholder other than
            ``{owner_name}``.
    """
    try:
        fields = {name for _, name, _, _ in Formatter().parse(template) if name is not None}
    except ValueError as exc:
        msg = f"reply_template is not a valid format string: {exc}"
        raise ValueError(msg) from exc
    unknown = sorted(fields - REPLY_TEMPLATE_FIELDS)
    if unknown:
        found = ", ".join(repr(name) for name in unknown)
        msg = f"reply_template may only use {{owner_name}}, found: {found}"
        raise ValueError(msg)
    return template


class Settings(BaseSettings):
    """Application settings loaded from environment variables and ``.env`` file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- General ---------------------------------------------------------------
    production: bool = False
    http_enabled: bool = True
    http_port: int = 8000
    sentry_dsn: str = ""

    # -- Ledger ----------------------------------------------------------------
    ledger_db_path: Path = Path("data/ledger.db")
    ledger_retention_days: int = 30

    # -- Gmail -----------------------------------------------------------------
    gmail_token_path: Path = Path("token.json")
    gmail_credentials_path: Path = Path("credentials.json")
    request_timeout_seconds: float = 30.0
    max_inbox_results: int = 500

    # -- Polling ---------------------------------------------------------------
    poll_min_seconds: float = 45.0
    poll_max_seconds: float = 120.0
    max_concurrency: int = 4
    thread_timeout_seconds: float = 120.0

    # -- Reply -----------------------------------------------------------------
    label_name: str = "Auto-Replied"
    reply_template: str = DEFAULT_REPLY_TEMPLATE
    owner_name_ttl_seconds: float = 3600.0

    @field_validator("reply_template")
    @classmethod
    def _check_reply_template(cls, value: str) -> str:
        return check_reply_template(value)

    @model_validator(mode="after")
    def _check_poll_bounds(self) -> Self:
        if self.poll_min_seconds <= 0:
            msg = "poll_min_seconds must be positive"
            raise ValueError(msg)
        if self.poll_min_seconds > self.poll_max_seconds:
            msg = "poll_min_seconds must not exceed poll_max_seconds"
            raise ValueError(msg)
        if self.max_concurrency < 1:
            msg = "max_concurrency must be at least 1"
            raise ValueError(msg)
        return self


@lru_cache
def get_settings() -> Settings:
    """Return a cached ``Settings`` instance.

    The ``@lru_cache`` decorator ensures environment variables are parsed
    exactly once.  Call ``get_settings.cache_clear()`` in tests to reset.

    Returns:
        The application ``Settings``.
    """
    try:
        return Settings()
    except ValidationError as exc:
        # Log only the structured errors list, never the full exception.
        logger.error("settings_validation_failed", errors=exc.errors())
        sys.exit(1)


def validate_credentials(settings: Settings) -> None:
    """Enforce credential presence at startup.

    In **production** mode the application exits with a clear error block if
    the Gmail token file is missing.  In **development** mode the problem is
    logged as a warning and the scheduler simply skips cycles until a token
    appears.

    Args:
        settings: The loaded application settings.
    """
    errors: list[str] = []

    if not settings.gmail_token_path.exists():
        errors.append(f"Gmail token file not found: {settings.gmail_token_path}")

    if not errors:
        logger.info("credential_validation_passed")
        return

    if settings.production:
        for err in errors:
            logger.error("credential_missing", detail=err)
        print("\n=== STARTUP FAILED ===", file=sys.stderr)
        print("Missing required credentials for production mode:", file=sys.stderr)
        for err in errors:
            print(f"  - {err}", file=sys.stderr)
        print("Run `autoreply-authorize` to create a token.", file=sys.stderr)
        print("======================\n", file=sys.stderr)
        sys.exit(1)
    else:
        for err in errors:
            logger.warning("credential_missing_dev", detail=err)
