"""
Unit tests for whototrust.esi.request

Tests cover request headers, the retry policy and its backoff windows, terminal
failures, and the bounded refresh-and-replay cycle after a 401.
"""

from unittest.mock import AsyncMock, Mock, patch

import pytest
from aiohttp import ClientConnectionError

from whototrust.esi.errors import (
    AuthError,
    TerminalRequestError,
    TransientRequestError,
)
from whototrust.esi.oauth import TokenAuthority
from whototrust.esi.request import RequestEngine, TokenLifecycle, TokenState

from conftest import make_credential, make_response

URL = "https://esi.evetech.net/latest/characters/90000001/"


@pytest.fixture
def authority():
    return AsyncMock(spec=TokenAuthority)


@pytest.fixture
def metrics_client():
    return Mock()


@pytest.fixture
def engine(settings, mock_session, authority, metrics_client):
    return RequestEngine(settings, mock_session, authority, metrics_client)


@pytest.fixture
def mock_sleep():
    with patch("whototrust.esi.request.asyncio.sleep", new_callable=AsyncMock) as m:
        yield m


def responses(mock_session, *items):
    mock_session.request.return_value.__aenter__.side_effect = list(items)


class TestHeaders:
    """Test suite for request construction."""

    async def test_execute_sends_standard_headers(self, engine, mock_session, settings):
        """Test bearer, accept, language, cache and user agent headers."""
        responses(mock_session, make_response(200, {"corporation_id": 1}))
        credential = make_credential(access_token="token-1")

        body = await engine.execute(URL, credential, {"datasource": "tranquility"})

        assert body == b'{"corporation_id": 1}'
        args, kwargs = mock_session.request.call_args
        assert args == ("GET", URL)
        assert kwargs["params"] == {"datasource": "tranquility"}
        headers = kwargs["headers"]
        assert headers["Authorization"] == "Bearer token-1"
        assert headers["Accept"] == "application/json"
        assert headers["Accept-Language"] == "en"
        assert headers["Cache-Control"] == "no-cache"
        assert headers["User-Agent"] == settings.user_agent
        assert kwargs["timeout"].total == settings.esi_request_timeout

    async def test_execute_public_has_no_authorization(self, engine, mock_session):
        responses(mock_session, make_response(200, {"px64x64": "url"}))

        await engine.execute_public(URL)

        _, kwargs = mock_session.request.call_args
        assert "Authorization" not in kwargs["headers"]

    async def test_send_accepts_custom_statuses(self, engine, mock_session):
        """Test a DELETE that expects 204 succeeds on 204."""
        responses(mock_session, make_response(204))

        body = await engine.send(
            "DELETE", URL, make_credential(), ok_statuses=(204,)
        )

        assert body == b""

    async def test_empty_access_token_rejected(self, engine, mock_session):
        """Test a credential without an access token is never sent."""
        with pytest.raises(ValueError):
            await engine.execute(URL, make_credential(access_token=""))

        mock_session.request.assert_not_called()


class TestRetry:
    """Test suite for the transient retry policy."""

    @pytest.mark.parametrize("status", [500, 503, 504])
    async def test_transient_status_retried_to_budget(
        self, engine, mock_session, mock_sleep, status
    ):
        """Test a persistently transient failure makes exactly five attempts."""
        responses(mock_session, *[make_response(status) for _ in range(5)])

        with pytest.raises(TransientRequestError) as exc_info:
            await engine.execute(URL, make_credential())

        assert exc_info.value.status == status
        assert mock_session.request.call_count == 5
        assert mock_sleep.await_count == 4

    async def test_backoff_windows(self, engine, mock_session, mock_sleep):
        """Test delay before retry i lies in [2^(i-1), 2^i) seconds."""
        responses(mock_session, *[make_response(503) for _ in range(5)])

        with pytest.raises(TransientRequestError):
            await engine.execute(URL, make_credential())

        delays = [call.args[0] for call in mock_sleep.await_args_list]
        for retry, delay in enumerate(delays, start=1):
            lower = 2 ** (retry - 1)
            assert lower <= delay < 2 * lower

    async def test_success_after_transient_failures(
        self, engine, mock_session, mock_sleep, metrics_client
    ):
        """Test a success short-circuits the remaining attempts."""
        responses(
            mock_session,
            make_response(500),
            make_response(504),
            make_response(200, [1, 2]),
        )

        body = await engine.execute(URL, make_credential())

        assert body == b"[1, 2]"
        assert mock_session.request.call_count == 3
        assert mock_sleep.await_count == 2
        retry_calls = [
            c
            for c in metrics_client.increment.call_args_list
            if c.args[0] == "whototrust.esi.request.retry"
        ]
        assert len(retry_calls) == 2

    @pytest.mark.parametrize("status", [400, 403, 404, 405, 502, 418])
    async def test_terminal_status_single_attempt(
        self, engine, mock_session, mock_sleep, status
    ):
        """Test terminal statuses are never retried."""
        responses(mock_session, make_response(status))

        with pytest.raises(TerminalRequestError) as exc_info:
            await engine.execute(URL, make_credential())

        assert exc_info.value.status == status
        assert mock_session.request.call_count == 1
        mock_sleep.assert_not_awaited()

    async def test_transport_failure_is_terminal(
        self, engine, mock_session, mock_sleep
    ):
        mock_session.request.return_value.__aenter__.side_effect = (
            ClientConnectionError("reset")
        )

        with pytest.raises(TerminalRequestError) as exc_info:
            await engine.execute(URL, make_credential())

        assert exc_info.value.status is None
        assert mock_session.request.call_count == 1


class TestBackoffDelay:
    """Test suite for RequestEngine.backoff_delay."""

    def test_without_jitter(self, engine):
        with patch("whototrust.esi.request.random.random", return_value=0.0):
            assert [engine.backoff_delay(i) for i in range(1, 8)] == [
                1.0,
                2.0,
                4.0,
                8.0,
                16.0,
                32.0,
                32.0,
            ]

    def test_jitter_is_proportional(self, engine):
        with patch("whototrust.esi.request.random.random", return_value=0.5):
            assert engine.backoff_delay(3) == 6.0


class TestRefreshOnUnauthorized:
    """Test suite for the 401 refresh-and-replay cycle."""

    async def test_single_refresh_and_replay(
        self, engine, mock_session, authority, mock_sleep
    ):
        """Test a 401 refreshes once, replays and updates the caller's credential."""
        responses(mock_session, make_response(401), make_response(200, {"ok": True}))
        authority.refresh.return_value = make_credential(
            access_token="fresh-access", refresh_token="fresh-refresh"
        )
        credential = make_credential(access_token="stale", refresh_token="old")

        body = await engine.execute(URL, credential)

        assert body == b'{"ok": true}'
        authority.refresh.assert_awaited_once_with("old")
        assert mock_session.request.call_count == 2
        assert credential.access_token == "fresh-access"
        assert credential.refresh_token == "fresh-refresh"
        _, kwargs = mock_session.request.call_args
        assert kwargs["headers"]["Authorization"] == "Bearer fresh-access"
        mock_sleep.assert_not_awaited()

    async def test_second_unauthorized_is_terminal(
        self, engine, mock_session, authority
    ):
        """Test a 401 after the refresh budget is spent surfaces unauthorized."""
        responses(mock_session, make_response(401), make_response(401))
        authority.refresh.return_value = make_credential(access_token="fresh")

        with pytest.raises(TerminalRequestError) as exc_info:
            await engine.execute(URL, make_credential())

        assert exc_info.value.status == 401
        assert authority.refresh.await_count == 1
        assert mock_session.request.call_count == 2

    async def test_failed_refresh_wraps_error(self, engine, mock_session, authority):
        """Test a failing refresh fails the call with a wrapping AuthError."""
        responses(mock_session, make_response(401))
        authority.refresh.side_effect = AuthError.token_rejected(400, "invalid_grant")

        with pytest.raises(AuthError) as exc_info:
            await engine.execute(URL, make_credential())

        assert exc_info.value.status == 400
        assert exc_info.value.body == "invalid_grant"
        assert mock_session.request.call_count == 1

    async def test_public_unauthorized_is_terminal(
        self, engine, mock_session, authority
    ):
        responses(mock_session, make_response(401))

        with pytest.raises(TerminalRequestError):
            await engine.execute_public(URL)

        authority.refresh.assert_not_awaited()

    async def test_no_authority_unauthorized_is_terminal(self, settings, mock_session):
        engine = RequestEngine(settings, mock_session)
        responses(mock_session, make_response(401))

        with pytest.raises(TerminalRequestError) as exc_info:
            await engine.execute(URL, make_credential())

        assert exc_info.value.status == 401


class TestTokenLifecycle:
    """Test suite for the per-request token state machine."""

    def test_initial_states(self):
        assert TokenLifecycle(None, 1).state == TokenState.UNAUTHENTICATED
        assert TokenLifecycle(make_credential(), 1).state == TokenState.AUTHENTICATED

    def test_refresh_budget(self):
        credential = make_credential(access_token="old")
        lifecycle = TokenLifecycle(credential, 1)

        assert lifecycle.can_refresh() is True
        lifecycle.begin_refresh()
        assert lifecycle.state == TokenState.REFRESH_IN_FLIGHT
        assert lifecycle.can_refresh() is False

        lifecycle.complete_refresh(make_credential(access_token="new"))
        assert lifecycle.state == TokenState.AUTHENTICATED
        assert credential.access_token == "new"
        assert lifecycle.can_refresh() is False

    def test_failed_never_refreshes(self):
        lifecycle = TokenLifecycle(make_credential(), 3)
        lifecycle.fail()
        assert lifecycle.state == TokenState.FAILED
        assert lifecycle.can_refresh() is False
