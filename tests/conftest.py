"""
Shared test configuration and fixtures for PDS client tests.

Provides session factories, a mock aiohttp response builder and an in-process fake PDS
built on aiohttp.web, so transport and client behavior can be exercised over real HTTP.
"""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock, Mock

import pytest
import pytest_asyncio
from aiohttp import ClientResponse, hdrs, web
from aiohttp.test_utils import TestServer
from multidict import CIMultiDict, CIMultiDictProxy

from social.graze.pdsclient.config import Settings
from social.graze.pdsclient.model.session import Session

TEST_DID = "did:plc:testuser123"
TEST_HANDLE = "alice.test"


def build_session(access: str = "a1", refresh: str = "r1", **extra: Any) -> Session:
    return Session(
        handle=TEST_HANDLE,
        did=TEST_DID,
        access_token=access,
        refresh_token=refresh,
        **extra,
    )


@pytest.fixture
def make_session() -> Callable[..., Session]:
    """Factory for sessions with the given access and refresh tokens."""
    return build_session


@pytest.fixture
def settings() -> Settings:
    return Settings(debug=False, metrics_backend="none", request_timeout=5.0)


def create_mock_response(
    status: int = 200,
    headers: Optional[Dict[str, str]] = None,
    content_type: str = "application/json",
    body: Any = None,
    charset: Optional[str] = None,
) -> ClientResponse:
    """Create a mock aiohttp ClientResponse whose body is read with `read()`."""
    mock_response = AsyncMock(spec=ClientResponse)
    mock_response.status = status

    headers_dict = dict(headers or {})
    if content_type and hdrs.CONTENT_TYPE not in headers_dict:
        headers_dict[hdrs.CONTENT_TYPE] = content_type
    mock_response.headers = CIMultiDictProxy(CIMultiDict(headers_dict))
    mock_response.charset = charset

    if body is None:
        raw = b""
    elif isinstance(body, bytes):
        raw = body
    elif isinstance(body, str):
        raw = body.encode()
    else:
        raw = json.dumps(body).encode()
    mock_response.read = AsyncMock(return_value=raw)

    mock_response.closed = False
    mock_response.close = Mock()
    mock_response.release = Mock()

    return mock_response


class FakePds:
    """
    Minimal PDS speaking enough XRPC for client tests.

    Every method other than the session endpoints and those listed in `public` requires
    `Authorization: Bearer {access_token}`. `expire()` invalidates the current access
    token; a successful refresh issues the next numbered token pair.
    """

    def __init__(self) -> None:
        self.generation = 1
        self.access_token: Optional[str] = "a1"
        self.refresh_token: Optional[str] = "r1"
        self.password = "app-password"

        self.refresh_calls = 0
        self.refresh_delay = 0.0
        self.refresh_failure: Optional[int] = None
        self.expired_status = 400

        self.public = {"com.atproto.server.describeServer"}
        self.handlers: Dict[str, Callable[[web.Request, bytes], Any]] = {}
        self.requests: List[Dict[str, Any]] = []

        self.url = ""

    def session_body(self) -> Dict[str, Any]:
        return {
            "handle": TEST_HANDLE,
            "did": TEST_DID,
            "accessJwt": self.access_token,
            "refreshJwt": self.refresh_token,
            "active": True,
        }

    def expire(self) -> None:
        self.access_token = None

    def xrpc_requests(self, nsid: str) -> List[Dict[str, Any]]:
        return [r for r in self.requests if r["nsid"] == nsid]

    @staticmethod
    def bearer(request: web.Request) -> Optional[str]:
        value = request.headers.get(hdrs.AUTHORIZATION, "")
        if not value.startswith("Bearer "):
            return None
        return value.removeprefix("Bearer ")

    async def create_session(self, request: web.Request) -> web.Response:
        payload = await request.json()
        self.requests.append(
            {"nsid": "com.atproto.server.createSession", "json": payload}
        )
        if payload.get("password") != self.password:
            return web.json_response(
                {"error": "AuthenticationRequired", "message": "Invalid identifier or password"},
                status=401,
            )
        return web.json_response(self.session_body())

    async def refresh_session(self, request: web.Request) -> web.Response:
        self.refresh_calls += 1
        token = self.bearer(request)
        self.requests.append(
            {"nsid": "com.atproto.server.refreshSession", "token": token}
        )

        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)

        if self.refresh_failure is not None:
            return web.json_response(
                {"error": "ExpiredToken", "message": "Token has been revoked"},
                status=self.refresh_failure,
            )
        if token is None or token != self.refresh_token:
            return web.json_response(
                {"error": "ExpiredToken", "message": "Token has been revoked"},
                status=400,
            )

        self.generation += 1
        self.access_token = f"a{self.generation}"
        self.refresh_token = f"r{self.generation}"
        return web.json_response(self.session_body())

    async def xrpc(self, request: web.Request) -> web.StreamResponse:
        nsid = request.match_info["nsid"]
        raw = await request.read()
        token = self.bearer(request)
        self.requests.append(
            {
                "nsid": nsid,
                "method": request.method,
                "query": list(request.query.items()),
                "headers": request.headers.copy(),
                "body": raw,
                "token": token,
            }
        )

        if nsid not in self.public and (token is None or token != self.access_token):
            return web.json_response(
                {"error": "ExpiredToken", "message": "Token has expired"},
                status=self.expired_status,
            )

        handler = self.handlers.get(nsid)
        if handler is not None:
            return handler(request, raw)

        return web.json_response({"nsid": nsid, "token": token})

    def application(self) -> web.Application:
        app = web.Application()
        app.add_routes(
            [
                web.post(
                    "/xrpc/com.atproto.server.createSession", self.create_session
                ),
                web.post(
                    "/xrpc/com.atproto.server.refreshSession", self.refresh_session
                ),
                web.route("*", "/xrpc/{nsid}", self.xrpc),
            ]
        )
        return app


@pytest_asyncio.fixture
async def fake_pds():
    """Run a FakePds on a local port for the duration of a test."""
    pds = FakePds()
    server = TestServer(pds.application())
    await server.start_server()
    pds.url = str(server.make_url("/"))

    yield pds

    await server.close()
