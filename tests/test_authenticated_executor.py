"""
Unit tests for AuthenticatedRequestExecutor.

The transport is mocked with a tiny token-checking server so the retry paths can be
observed exactly: which token each attempt carried and whether a refresh ran.
"""

import asyncio
import io
from unittest.mock import AsyncMock, Mock, patch

from aiohttp import FormData, MultipartWriter
import pytest

from social.graze.pdsclient.errors import NoSessionError, RefreshError, RequestError
from social.graze.pdsclient.metrics import MetricsClient
from social.graze.pdsclient.session.executor import (
    AuthenticatedRequestExecutor,
    is_auth_failure,
)
from social.graze.pdsclient.session.refresh import RefreshCoordinator
from social.graze.pdsclient.session.state import SessionState
from social.graze.pdsclient.xrpc.transport import RequestTransport


class TokenServer:
    """Accepts only `valid` as bearer token; records the token of every attempt."""

    def __init__(self, valid, expired_status=401, expired_code=None):
        self.valid = valid
        self.expired_status = expired_status
        self.expired_code = expired_code
        self.seen = []
        self.bodies = []
        self.before_reject = None

    async def execute(self, method, path, *, params=None, body=None, headers=None):
        token = headers["Authorization"].removeprefix("Bearer ")
        self.seen.append(token)
        self.bodies.append(body)
        if token != self.valid:
            if self.before_reject is not None:
                self.before_reject()
            raise RequestError(
                "Token has expired", self.expired_status, self.expired_code
            )
        return {"path": path, "token": token}


@pytest.fixture
def state(make_session):
    return SessionState(
        base_url="https://pds.example.com", session=make_session("a1", "r1")
    )


def build_executor(state, server, operation, **kwargs):
    transport = AsyncMock(spec=RequestTransport)
    transport.execute.side_effect = server.execute
    coordinator = RefreshCoordinator(state, operation)
    executor = AuthenticatedRequestExecutor(transport, state, coordinator, **kwargs)
    return executor, transport


class TestIsAuthFailure:
    """Test the default authentication failure predicate."""

    def test_unauthorized(self):
        assert is_auth_failure(RequestError("Unauthorized", 401))

    @pytest.mark.parametrize("code", ["ExpiredToken", "InvalidToken"])
    def test_expired_token_codes(self, code):
        assert is_auth_failure(RequestError("Token has expired", 400, code))

    def test_other_errors(self):
        assert not is_auth_failure(RequestError("Bad request", 400, "InvalidRequest"))
        assert not is_auth_failure(RequestError("Forbidden", 403, "ExpiredToken"))
        assert not is_auth_failure(RequestError("Server error", 500))


class TestAuthenticatedRequestExecutor:
    """Test suite for AuthenticatedRequestExecutor.execute."""

    @pytest.mark.asyncio
    async def test_no_session_fails_before_io(self):
        state = SessionState(base_url="https://pds.example.com")
        operation = AsyncMock()
        executor, transport = build_executor(state, TokenServer("a1"), operation)

        with pytest.raises(NoSessionError):
            await executor.execute("GET", "app.bsky.actor.getProfile")

        transport.execute.assert_not_called()
        operation.assert_not_called()

    @pytest.mark.asyncio
    async def test_attaches_bearer_token(self, state):
        server = TokenServer("a1")
        executor, transport = build_executor(state, server, AsyncMock())

        result = await executor.execute(
            "GET",
            "app.bsky.actor.getProfile",
            params={"actor": "alice.test"},
            headers={"Authorization": "Bearer spoofed", "Accept-Language": "en"},
        )

        assert result == {"path": "app.bsky.actor.getProfile", "token": "a1"}
        transport.execute.assert_awaited_once_with(
            "GET",
            "app.bsky.actor.getProfile",
            params={"actor": "alice.test"},
            body=None,
            headers={"Accept-Language": "en", "Authorization": "Bearer a1"},
        )

    @pytest.mark.asyncio
    async def test_non_auth_failure_propagates_without_refresh(self, state):
        error = RequestError("Record not found", 400, "RecordNotFound")
        transport = AsyncMock(spec=RequestTransport)
        transport.execute.side_effect = error
        operation = AsyncMock()
        executor = AuthenticatedRequestExecutor(
            transport, state, RefreshCoordinator(state, operation)
        )

        with pytest.raises(RequestError) as exc_info:
            await executor.execute("GET", "com.atproto.repo.getRecord")

        assert exc_info.value is error
        assert transport.execute.await_count == 1
        operation.assert_not_called()

    @pytest.mark.asyncio
    async def test_refresh_and_retry(self, state, make_session):
        """An expired token is refreshed once and the call is repeated with the new one."""
        server = TokenServer("a2")
        operation = AsyncMock(return_value=make_session("a2", "r2"))
        executor, _ = build_executor(state, server, operation)

        result = await executor.execute("GET", "app.bsky.actor.getProfile")

        assert result["token"] == "a2"
        assert server.seen == ["a1", "a2"]
        operation.assert_awaited_once_with("r1")
        assert state.get_session().refresh_token == "r2"

    @pytest.mark.asyncio
    async def test_stream_body_is_read_once_for_both_attempts(self, state, make_session):
        server = TokenServer("a2")
        operation = AsyncMock(return_value=make_session("a2", "r2"))
        executor, _ = build_executor(state, server, operation)

        await executor.execute(
            "POST", "com.atproto.repo.uploadBlob", body=io.BytesIO(b"\x00\x01blob")
        )

        assert server.seen == ["a1", "a2"]
        assert server.bodies == [b"\x00\x01blob", b"\x00\x01blob"]

    @pytest.mark.asyncio
    async def test_form_body_is_encoded_once_for_both_attempts(
        self, state, make_session
    ):
        form = FormData()
        form.add_field("file", b"blob", filename="blob.bin")
        server = TokenServer("a2")
        operation = AsyncMock(return_value=make_session("a2", "r2"))
        executor, _ = build_executor(state, server, operation)

        await executor.execute("POST", "com.example.upload", body=form)

        first, second = server.bodies
        assert isinstance(first, MultipartWriter)
        assert first is second

    @pytest.mark.asyncio
    async def test_reuses_session_installed_during_first_attempt(
        self, state, make_session
    ):
        """When another call already refreshed, its session is used without refreshing."""
        server = TokenServer("a2")
        server.before_reject = lambda: state.use_session(make_session("a2", "r2"))
        operation = AsyncMock()
        metrics = Mock(spec=MetricsClient)
        executor, _ = build_executor(state, server, operation, metrics_client=metrics)

        result = await executor.execute("GET", "app.bsky.actor.getProfile")

        assert result["token"] == "a2"
        assert server.seen == ["a1", "a2"]
        operation.assert_not_called()
        metrics.increment.assert_called_once_with(
            "pdsclient.session.retry", 1, tag_dict={"path": "reuse"}
        )

    @pytest.mark.asyncio
    async def test_retry_outcome_is_final(self, state, make_session):
        server = TokenServer("never-valid")
        operation = AsyncMock(return_value=make_session("a2", "r2"))
        executor, _ = build_executor(state, server, operation)

        with pytest.raises(RequestError) as exc_info:
            await executor.execute("GET", "app.bsky.actor.getProfile")

        assert exc_info.value.status == 401
        assert server.seen == ["a1", "a2"]
        operation.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_refresh_failure_replaces_auth_failure(self, state):
        server = TokenServer("a2")
        cause = RequestError("Token has been revoked", 400, "ExpiredToken")
        operation = AsyncMock(side_effect=cause)
        executor, _ = build_executor(state, server, operation)

        with patch("social.graze.pdsclient.session.refresh.sentry_sdk"):
            with pytest.raises(RefreshError) as exc_info:
                await executor.execute("GET", "app.bsky.actor.getProfile")

        assert exc_info.value.__cause__ is cause
        assert server.seen == ["a1"]

    @pytest.mark.asyncio
    async def test_expired_token_400_triggers_refresh(self, state, make_session):
        server = TokenServer("a2", expired_status=400, expired_code="ExpiredToken")
        operation = AsyncMock(return_value=make_session("a2", "r2"))
        executor, _ = build_executor(state, server, operation)

        result = await executor.execute("POST", "com.atproto.repo.createRecord", body={})

        assert result["token"] == "a2"
        operation.assert_awaited_once_with("r1")

    @pytest.mark.asyncio
    async def test_custom_auth_failure_predicate(self, state, make_session):
        server = TokenServer("a2", expired_status=403, expired_code="Forbidden")
        operation = AsyncMock(return_value=make_session("a2", "r2"))
        executor, _ = build_executor(
            state,
            server,
            operation,
            auth_failure_predicate=lambda error: error.status == 403,
        )

        result = await executor.execute("GET", "app.bsky.actor.getProfile")

        assert result["token"] == "a2"

    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_refresh(self, state, make_session):
        server = TokenServer("a2")

        async def slow_refresh(refresh_token):
            await asyncio.sleep(0.01)
            return make_session("a2", "r2")

        operation = AsyncMock(side_effect=slow_refresh)
        metrics = Mock(spec=MetricsClient)
        executor, _ = build_executor(state, server, operation, metrics_client=metrics)

        results = await asyncio.gather(
            *[executor.execute("GET", f"com.example.call{i}") for i in range(3)]
        )

        assert [r["token"] for r in results] == ["a2", "a2", "a2"]
        operation.assert_awaited_once_with("r1")
        assert server.seen.count("a1") == 3
        assert server.seen.count("a2") == 3

    @pytest.mark.asyncio
    async def test_back_to_back_calls_refresh_once(self, state, make_session):
        """After a refresh, the next call uses the new token directly."""
        server = TokenServer("a2")
        operation = AsyncMock(return_value=make_session("a2", "r2"))
        executor, _ = build_executor(state, server, operation)

        await executor.execute("GET", "com.example.first")
        await executor.execute("GET", "com.example.second")

        assert server.seen == ["a1", "a2", "a2"]
        operation.assert_awaited_once()
