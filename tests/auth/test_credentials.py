"""Tests for the auth credentials module.

Uses unittest.mock to avoid requiring real Google API credentials.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

from google.auth.exceptions import RefreshError, TransportError
from googleapiclient.http import HttpRequest

from autoreply.auth.credentials import (
    DEFAULT_CREDENTIALS_PATH,
    DEFAULT_GMAIL_SCOPES,
    DEFAULT_TOKEN_PATH,
    CredentialProvider,
    build_parser,
    get_gmail_credentials,
    get_gmail_service,
    get_people_service,
    main,
)

# ---------------------------------------------------------------------------
# get_gmail_credentials
# ---------------------------------------------------------------------------


class TestGetGmailCredentials:
    """Tests for the interactive get_gmail_credentials."""

    @patch("autoreply.auth.credentials.Credentials.from_authorized_user_file")
    def test_loads_existing_valid_token(self, mock_from_file: MagicMock, tmp_path: Path):
        """Returns cached credentials when token.json exists and is valid."""
        token_path = tmp_path / "token.json"
        token_path.write_text("{}")

        mock_creds = MagicMock()
        mock_creds.valid = True
        mock_from_file.return_value = mock_creds

        result = get_gmail_credentials(token_path=token_path)

        mock_from_file.assert_called_once_with(str(token_path), DEFAULT_GMAIL_SCOPES)
        assert result is mock_creds

    @patch("autoreply.auth.credentials.Credentials.from_authorized_user_file")
    def test_refreshes_expired_token(self, mock_from_file: MagicMock, tmp_path: Path):
        """Refreshes credentials when token exists but is expired."""
        token_path = tmp_path / "token.json"
        token_path.write_text("{}")

        mock_creds = MagicMock()
        mock_creds.valid = False
        mock_creds.expired = True
        mock_creds.refresh_token = "refresh-token"
        mock_creds.to_json.return_value = '{"refreshed": true}'
        mock_from_file.return_value = mock_creds

        result = get_gmail_credentials(token_path=token_path)

        mock_creds.refresh.assert_called_once()
        assert result is mock_creds
        assert token_path.read_text() == '{"refreshed": true}'

    @patch("autoreply.auth.credentials.InstalledAppFlow.from_client_secrets_file")
    def test_runs_oauth_flow_when_no_token(self, mock_flow_cls: MagicMock, tmp_path: Path):
        """Initiates the consent flow when no token.json exists and persists the result."""
        token_path = tmp_path / "token.json"
        creds_path = tmp_path / "credentials.json"
        creds_path.write_text("{}")

        mock_flow = MagicMock()
        mock_creds = MagicMock()
        mock_creds.to_json.return_value = '{"token": "new"}'
        mock_flow.run_local_server.return_value = mock_creds
        mock_flow_cls.return_value = mock_flow

        result = get_gmail_credentials(token_path=token_path, credentials_path=creds_path)

        mock_flow_cls.assert_called_once_with(str(creds_path), DEFAULT_GMAIL_SCOPES)
        mock_flow.run_local_server.assert_called_once_with(port=0)
        assert result is mock_creds
        assert token_path.read_text() == '{"token": "new"}'

    def test_default_constants(self):
        """Default constants have expected values."""
        assert DEFAULT_TOKEN_PATH == "token.json"
        assert DEFAULT_CREDENTIALS_PATH == "credentials.json"
        assert any("gmail.modify" in scope for scope in DEFAULT_GMAIL_SCOPES)
        assert any("gmail.send" in scope for scope in DEFAULT_GMAIL_SCOPES)
        assert any("userinfo.profile" in scope for scope in DEFAULT_GMAIL_SCOPES)


# ---------------------------------------------------------------------------
# CredentialProvider
# ---------------------------------------------------------------------------


def _valid_creds() -> MagicMock:
    creds = MagicMock()
    creds.valid = True
    return creds


def _expired_creds(refresh_token: str | None = "refresh-token") -> MagicMock:
    creds = MagicMock()
    creds.valid = False
    creds.expired = True
    creds.refresh_token = refresh_token
    creds.to_json.return_value = '{"token": "refreshed"}'
    return creds


class TestCredentialProvider:
    """Tests for the non-interactive CredentialProvider."""

    def test_missing_token_returns_none(self, tmp_path: Path):
        provider = CredentialProvider(tmp_path / "token.json")

        assert provider.get_credentials() is None
        assert provider.has_credentials() is False

    @patch("autoreply.auth.credentials.Credentials.from_authorized_user_file")
    def test_loads_valid_token_once(self, mock_from_file: MagicMock, tmp_path: Path):
        token_path = tmp_path / "token.json"
        token_path.write_text("{}")
        mock_from_file.return_value = _valid_creds()
        provider = CredentialProvider(token_path)

        first = provider.get_credentials()
        second = provider.get_credentials()

        assert first is second
        assert provider.has_credentials() is True
        mock_from_file.assert_called_once_with(str(token_path), DEFAULT_GMAIL_SCOPES)

    @patch("autoreply.auth.credentials.Credentials.from_authorized_user_file")
    def test_unreadable_token_returns_none(self, mock_from_file: MagicMock, tmp_path: Path):
        token_path = tmp_path / "token.json"
        token_path.write_text("not json")
        mock_from_file.side_effect = ValueError("bad token")

        assert CredentialProvider(token_path).get_credentials() is None

    @patch("autoreply.auth.credentials.Credentials.from_authorized_user_file")
    def test_refreshes_and_persists(self, mock_from_file: MagicMock, tmp_path: Path):
        token_path = tmp_path / "token.json"
        token_path.write_text("{}")
        creds = _expired_creds()
        mock_from_file.return_value = creds

        result = CredentialProvider(token_path).get_credentials()

        assert result is creds
        creds.refresh.assert_called_once()
        assert token_path.read_text() == '{"token": "refreshed"}'

    @patch("autoreply.auth.credentials.Credentials.from_authorized_user_file")
    def test_revoked_refresh_returns_none(self, mock_from_file: MagicMock, tmp_path: Path):
        token_path = tmp_path / "token.json"
        token_path.write_text("{}")
        creds = _expired_creds()
        creds.refresh.side_effect = RefreshError("invalid_grant")
        mock_from_file.return_value = creds
        provider = CredentialProvider(token_path)

        assert provider.get_credentials() is None
        assert provider.has_credentials() is False

    @patch("autoreply.auth.credentials.Credentials.from_authorized_user_file")
    def test_network_failure_on_refresh_returns_none(
        self, mock_from_file: MagicMock, tmp_path: Path
    ):
        token_path = tmp_path / "token.json"
        token_path.write_text("{}")
        creds = _expired_creds()
        creds.refresh.side_effect = TransportError("unreachable")
        mock_from_file.return_value = creds

        assert CredentialProvider(token_path).get_credentials() is None
        assert token_path.read_text() == "{}"

    @patch("autoreply.auth.credentials.Credentials.from_authorized_user_file")
    def test_no_refresh_token_returns_none(self, mock_from_file: MagicMock, tmp_path: Path):
        token_path = tmp_path / "token.json"
        token_path.write_text("{}")
        creds = _expired_creds(refresh_token=None)
        mock_from_file.return_value = creds

        assert CredentialProvider(token_path).get_credentials() is None
        creds.refresh.assert_not_called()

    @patch("autoreply.auth.credentials.Credentials.from_authorized_user_file")
    def test_invalidate_reloads_from_disk(self, mock_from_file: MagicMock, tmp_path: Path):
        token_path = tmp_path / "token.json"
        token_path.write_text("{}")
        first, second = _valid_creds(), _valid_creds()
        mock_from_file.side_effect = [first, second]
        provider = CredentialProvider(token_path)

        assert provider.get_credentials() is first
        provider.invalidate()

        assert provider.has_credentials() is False
        assert provider.get_credentials() is second


# ---------------------------------------------------------------------------
# Service builders
# ---------------------------------------------------------------------------


class TestServiceBuilders:
    """Tests for get_gmail_service and get_people_service."""

    @patch("autoreply.auth.credentials.build")
    def test_gmail_service_with_credentials(self, mock_build: MagicMock):
        mock_creds = MagicMock()
        mock_build.return_value = MagicMock()

        result = get_gmail_service(credentials=mock_creds, timeout=12.5)

        args, kwargs = mock_build.call_args
        assert args == ("gmail", "v1")
        assert kwargs["cache_discovery"] is False
        assert kwargs["http"].http.timeout == 12.5
        assert result is mock_build.return_value

    @patch("autoreply.auth.credentials.build")
    def test_requests_do_not_share_http(self, mock_build: MagicMock):
        get_gmail_service(credentials=MagicMock(), timeout=7.0)
        request_builder = mock_build.call_args.kwargs["requestBuilder"]
        shared = mock_build.call_args.kwargs["http"]

        first = request_builder(shared, MagicMock(), "https://gmail.googleapis.com/a")
        second = request_builder(shared, MagicMock(), "https://gmail.googleapis.com/b")

        assert isinstance(first, HttpRequest)
        assert first.http is not shared
        assert first.http is not second.http
        assert first.http.http is not second.http.http
        assert first.http.http.timeout == 7.0
        assert second.uri == "https://gmail.googleapis.com/b"

    @patch("autoreply.auth.credentials.build")
    @patch("autoreply.auth.credentials.get_gmail_credentials")
    def test_gmail_service_loads_credentials_when_none(
        self, mock_get_creds: MagicMock, mock_build: MagicMock
    ):
        mock_get_creds.return_value = MagicMock()

        get_gmail_service()

        mock_get_creds.assert_called_once()
        mock_build.assert_called_once()

    @patch("autoreply.auth.credentials.build")
    def test_people_service(self, mock_build: MagicMock):
        get_people_service(MagicMock())

        args, kwargs = mock_build.call_args
        assert args == ("people", "v1")
        assert callable(kwargs["requestBuilder"])


# ---------------------------------------------------------------------------
# autoreply-authorize CLI
# ---------------------------------------------------------------------------


class TestAuthorizeCli:
    """Tests for the autoreply-authorize entry point."""

    def test_parser_defaults(self):
        args = build_parser().parse_args([])
        assert args.token == DEFAULT_TOKEN_PATH
        assert args.client_secrets == DEFAULT_CREDENTIALS_PATH

    @patch("autoreply.auth.credentials.get_gmail_credentials")
    def test_main_runs_flow(self, mock_get_creds: MagicMock, capsys):
        main(["--token", "out/token.json", "--client-secrets", "secret.json"])

        mock_get_creds.assert_called_once_with(
            token_path="out/token.json", credentials_path="secret.json"
        )
        assert "out/token.json" in capsys.readouterr().out
