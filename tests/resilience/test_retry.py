"""Tests for the resilient_api_call retry decorator."""

from __future__ import annotations

from collections.abc import Iterator
from unittest.mock import MagicMock, patch

import pytest

from autoreply.domain.errors import AuthExpiredError, TransientGatewayError
from autoreply.resilience.retry import MAX_ATTEMPTS, resilient_api_call


@pytest.fixture(autouse=True)
def mock_sleep() -> Iterator[MagicMock]:
    """Skip tenacity backoff sleeps."""
    with patch("tenacity.nap.time.sleep") as sleeper:
        yield sleeper


class TestResilientApiCall:
    """Tests for retry behaviour by exception type."""

    def test_success_no_retry(self) -> None:
        calls = MagicMock(return_value="ok")

        @resilient_api_call("test.op")
        def op() -> str:
            return calls()

        assert op() == "ok"
        assert calls.call_count == 1

    def test_transient_then_success(self, mock_sleep: MagicMock) -> None:
        calls = MagicMock(side_effect=[TransientGatewayError("op"), "ok"])

        @resilient_api_call("test.op")
        def op() -> str:
            return calls()

        assert op() == "ok"
        assert calls.call_count == 2
        assert mock_sleep.call_count == 1

    def test_reraises_original_after_exhaustion(self) -> None:
        error = TransientGatewayError("op", "HTTP 503")
        calls = MagicMock(side_effect=error)

        @resilient_api_call("test.op")
        def op() -> str:
            return calls()

        with pytest.raises(TransientGatewayError) as exc_info:
            op()

        assert exc_info.value is error
        assert calls.call_count == MAX_ATTEMPTS

    def test_auth_expired_not_retried(self) -> None:
        calls = MagicMock(side_effect=AuthExpiredError("op"))

        @resilient_api_call("test.op")
        def op() -> str:
            return calls()

        with pytest.raises(AuthExpiredError):
            op()

        assert calls.call_count == 1

    def test_other_errors_not_retried(self) -> None:
        calls = MagicMock(side_effect=KeyError("missing"))

        @resilient_api_call("test.op")
        def op() -> str:
            return calls()

        with pytest.raises(KeyError):
            op()

        assert calls.call_count == 1

    def test_preserves_function_name(self) -> None:
        @resilient_api_call("test.op")
        def list_things() -> list[str]:
            return []

        assert list_things.__name__ == "list_things"
