"""Authenticated XRPC calls with a single refresh-and-retry on session expiry."""

import logging
from typing import Any, Callable, Dict, Mapping, Optional

from aiohttp import hdrs

from social.graze.pdsclient.errors import RequestError
from social.graze.pdsclient.metrics import MetricsClient, NoOpMetricsClient
from social.graze.pdsclient.session.refresh import RefreshCoordinator
from social.graze.pdsclient.session.state import SessionState
from social.graze.pdsclient.xrpc.transport import RequestTransport, buffer_body
from social.graze.pdsclient.xrpc.url import QueryParams

logger = logging.getLogger(__name__)

AuthFailurePredicate = Callable[[RequestError], bool]

EXPIRED_TOKEN_ERRORS = frozenset({"ExpiredToken", "InvalidToken"})


def is_auth_failure(error: RequestError) -> bool:
    """Default check for responses that mean the access token is no longer accepted.

    PDS implementations answer with 401, or with 400 and an `ExpiredToken` /
    `InvalidToken` XRPC error.
    """
    if error.status == 401:
        return True
    return error.status == 400 and error.code in EXPIRED_TOKEN_ERRORS


class AuthenticatedRequestExecutor:
    """
    Runs one logical authenticated call.

    The bearer token is read from SessionState for every attempt. On an authentication
    failure the executor either reuses a session that some other call already installed,
    or waits on the RefreshCoordinator, and then retries exactly once. The outcome of the
    retry is final.
    """

    def __init__(
        self,
        transport: RequestTransport,
        state: SessionState,
        coordinator: RefreshCoordinator,
        auth_failure_predicate: Optional[AuthFailurePredicate] = None,
        metrics_client: Optional[MetricsClient] = None,
        metrics_prefix: str = "pdsclient",
    ) -> None:
        self._transport = transport
        self._state = state
        self._coordinator = coordinator
        self._is_auth_failure = auth_failure_predicate or is_auth_failure
        self._metrics_client = metrics_client or NoOpMetricsClient()
        self._metrics_prefix = metrics_prefix

    async def _attempt(
        self,
        access_token: str,
        method: str,
        path: str,
        params: Optional[QueryParams],
        body: Any,
        headers: Optional[Mapping[str, str]],
    ) -> Any:
        request_headers: Dict[str, str] = {
            k: v for k, v in (headers or {}).items() if k.lower() != "authorization"
        }
        request_headers[hdrs.AUTHORIZATION] = f"Bearer {access_token}"

        return await self._transport.execute(
            method, path, params=params, body=body, headers=request_headers
        )

    async def execute(
        self,
        method: str,
        path: str,
        *,
        params: Optional[QueryParams] = None,
        body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        """
        Execute an authenticated XRPC call.

        Raises:
            NoSessionError: No session is active; raised before any I/O
            ConfigurationError: No base URL is configured; raised before any I/O
            RefreshError: The session expired and renewing it failed
            RequestError: The call failed for another reason, or the retry failed
        """
        session = self._state.require_session()
        used_token = session.access_token

        # Both attempts must send the same bytes; a stream is exhausted by the first.
        body = buffer_body(body)

        try:
            return await self._attempt(used_token, method, path, params, body, headers)
        except RequestError as e:
            if not self._is_auth_failure(e):
                raise
            logger.debug(
                f"Authentication failure on {method.upper()} {path}: {e.status} {e.code}"
            )

        current = self._state.get_session() or session

        if current.access_token != used_token:
            retry_path = "reuse"
            retry_token = current.access_token
        else:
            retry_path = "refresh"
            refreshed = await self._coordinator.refresh(current.refresh_token)
            retry_token = refreshed.access_token

        self._metrics_client.increment(
            f"{self._metrics_prefix}.session.retry", 1, tag_dict={"path": retry_path}
        )

        return await self._attempt(retry_token, method, path, params, body, headers)
