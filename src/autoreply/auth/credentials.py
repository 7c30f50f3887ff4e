"""Gmail OAuth2 credential management.

Provides helpers for:
- Running the one-off installed-app consent flow and persisting token.json
- A non-interactive ``CredentialProvider`` that hands the scheduler a live,
  auto-refreshing credential (or ``None`` while the account is not
  authenticated)
- Building the Gmail and People API service clients with explicit
  per-request timeouts
"""

from __future__ import annotations

import argparse
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

import google.auth.transport.requests
import google_auth_httplib2  # type: ignore[import-untyped]
import httplib2  # type: ignore[import-untyped]
import structlog
from google.auth.exceptions import RefreshError, TransportError
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow  # type: ignore[import-untyped]
from googleapiclient.discovery import Resource, build
from googleapiclient.http import HttpRequest

logger = structlog.get_logger()

DEFAULT_GMAIL_SCOPES: list[str] = [
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/gmail.send",
    "https://www.googleapis.com/auth/userinfo.profile",
]

DEFAULT_TOKEN_PATH: str = "token.json"
DEFAULT_CREDENTIALS_PATH: str = "credentials.json"
DEFAULT_REQUEST_TIMEOUT: float = 30.0


def get_gmail_credentials(
    token_path: str | Path = DEFAULT_TOKEN_PATH,
    credentials_path: str | Path = DEFAULT_CREDENTIALS_PATH,
    scopes: list[str] | None = None,
) -> Credentials:
    """Load Gmail OAuth2 credentials, refreshing or creating as needed.

    If ``token_path`` exists and the stored credentials are valid (or can be
    refreshed), they are returned directly.  Otherwise an interactive OAuth2
    flow is initiated via ``InstalledAppFlow.run_local_server()``.

    The resulting credentials are persisted to ``token_path`` for future use.

    Args:
        token_path: Path to the cached OAuth2 token file.
        credentials_path: Path to the OAuth2 client-secrets file.
        scopes: OAuth2 scopes to request.  Defaults to
            ``DEFAULT_GMAIL_SCOPES``.

    Returns:
        A ``google.oauth2.credentials.Credentials`` instance ready for API
        calls.
    """
    if scopes is None:
        scopes = DEFAULT_GMAIL_SCOPES

    token_path = Path(token_path)
    credentials_path = Path(credentials_path)
    creds: Credentials | None = None

    if token_path.exists():
        creds = Credentials.from_authorized_user_file(str(token_path), scopes)  # type: ignore[no-untyped-call]

    if creds and creds.valid:
        return creds

    if creds and creds.expired and creds.refresh_token:
        creds.refresh(google.auth.transport.requests.Request())
    else:
        flow = InstalledAppFlow.from_client_secrets_file(str(credentials_path), scopes)
        creds = flow.run_local_server(port=0)

    token_path.parent.mkdir(parents=True, exist_ok=True)
    token_path.write_text(creds.to_json())
    return creds


class CredentialProvider:
    """Non-interactive source of the mailbox owner's credential.

    Loads ``token_path`` on demand, refreshes an expired token with its
    refresh token and persists the result.  Never starts a consent flow:
    when no usable credential exists ``get_credentials()`` returns ``None``
    and the scheduler skips the cycle.

    Args:
        token_path: Path to the OAuth2 token file written by
            ``autoreply-authorize``.
        scopes: OAuth2 scopes the token must carry.
    """

    def __init__(
        self,
        token_path: str | Path = DEFAULT_TOKEN_PATH,
        scopes: list[str] | None = None,
    ) -> None:
        self._token_path = Path(token_path)
        self._scopes = scopes if scopes is not None else DEFAULT_GMAIL_SCOPES
        self._creds: Credentials | None = None
        self._lock = threading.Lock()

    @property
    def token_path(self) -> Path:
        return self._token_path

    def get_credentials(self) -> Credentials | None:
        """Return a valid credential, or ``None`` if the account is not authenticated."""
        with self._lock:
            if self._creds is None:
                if not self._token_path.exists():
                    return None
                try:
                    self._creds = Credentials.from_authorized_user_file(  # type: ignore[no-untyped-call]
                        str(self._token_path), self._scopes
                    )
                except ValueError:
                    logger.warning("Token file unreadable", token_path=str(self._token_path))
                    return None

            creds = self._creds
            if creds.valid:
                return creds

            if not (creds.expired and creds.refresh_token):
                logger.warning("Credential invalid and not refreshable")
                self._creds = None
                return None

            try:
                creds.refresh(google.auth.transport.requests.Request())
            except RefreshError:
                logger.warning("Credential refresh rejected, re-authorization required")
                self._creds = None
                return None
            except TransportError:
                logger.warning("Credential refresh failed on network error", exc_info=True)
                return None

            self._token_path.write_text(creds.to_json())
            logger.info("Credential refreshed")
            return creds

    def has_credentials(self) -> bool:
        """Return ``True`` if a credential is loaded and currently valid."""
        with self._lock:
            return self._creds is not None and bool(self._creds.valid)

    def invalidate(self) -> None:
        """Drop the cached credential so the next call reloads it from disk."""
        with self._lock:
            self._creds = None
        logger.info("Credential invalidated")


def _authorized_http(credentials: Credentials, timeout: float) -> Any:
    return google_auth_httplib2.AuthorizedHttp(credentials, http=httplib2.Http(timeout=timeout))


def _request_builder(credentials: Credentials, timeout: float) -> Callable[..., HttpRequest]:
    """Return a ``requestBuilder`` that gives every request its own ``Http``.

    ``httplib2.Http`` is not thread-safe, and the scheduler calls one
    service from several worker threads at once.
    """

    def build_request(_http: Any, *args: Any, **kwargs: Any) -> HttpRequest:
        return HttpRequest(_authorized_http(credentials, timeout), *args, **kwargs)

    return build_request


def get_gmail_service(
    credentials: Credentials | None = None,
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
) -> Resource:
    """Build and return a Gmail API v1 service client.

    Args:
        credentials: Pre-loaded OAuth2 credentials.  If ``None``,
            ``get_gmail_credentials()`` is called to obtain them.
        timeout: Socket timeout in seconds for every request.  Each request
            runs on its own connection.

    Returns:
        A ``googleapiclient.discovery.Resource`` for the Gmail API v1.
    """
    if credentials is None:
        credentials = get_gmail_credentials()
    return build(
        "gmail",
        "v1",
        http=_authorized_http(credentials, timeout),
        requestBuilder=_request_builder(credentials, timeout),
        cache_discovery=False,
    )


def get_people_service(
    credentials: Credentials,
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
) -> Resource:
    """Build and return a People API v1 service client (owner identity lookup).

    Args:
        credentials: OAuth2 credentials carrying the ``userinfo.profile`` scope.
        timeout: Socket timeout in seconds for every request.

    Returns:
        A ``googleapiclient.discovery.Resource`` for the People API v1.
    """
    return build(
        "people",
        "v1",
        http=_authorized_http(credentials, timeout),
        requestBuilder=_request_builder(credentials, timeout),
        cache_discovery=False,
    )


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser for ``autoreply-authorize``."""
    parser = argparse.ArgumentParser(
        description="Authorize autoreply to act on a Gmail mailbox and store the token",
    )
    parser.add_argument(
        "--token",
        type=str,
        default=DEFAULT_TOKEN_PATH,
        help=f"Where to write the token (default: {DEFAULT_TOKEN_PATH})",
    )
    parser.add_argument(
        "--client-secrets",
        type=str,
        default=DEFAULT_CREDENTIALS_PATH,
        help=f"OAuth client secrets file (default: {DEFAULT_CREDENTIALS_PATH})",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Run the installed-app consent flow and persist the token."""
    args = build_parser().parse_args(argv)
    get_gmail_credentials(token_path=args.token, credentials_path=args.client_secrets)
    print(f"Token written to {args.token}")


if __name__ == "__main__":
    main()
