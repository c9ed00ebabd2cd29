"""
PDS Client

PdsClient wires the pieces of an authenticated XRPC client together for a single account:

- SessionState holds the base URL and the current Session
- RequestTransport performs single calls through the middleware chain
- RefreshCoordinator runs at most one session refresh at a time
- AuthenticatedRequestExecutor attaches the access token and retries once after a refresh

A client must be created inside a running event loop, because it owns an
aiohttp.ClientSession unless one is handed in.
"""

from functools import partial
import logging
from types import TracebackType
from typing import Any, Callable, List, Mapping, Optional

from aiohttp import ClientSession, ClientTimeout, hdrs

from social.graze.pdsclient.atproto.auth import create_session, refresh_session
from social.graze.pdsclient.config import Settings
from social.graze.pdsclient.errors import ConfigurationError
from social.graze.pdsclient.metrics import MetricsClient, NoOpMetricsClient
from social.graze.pdsclient.model.session import Session
from social.graze.pdsclient.resolve.identity import resolve_pds_url
from social.graze.pdsclient.session.executor import (
    AuthenticatedRequestExecutor,
    AuthFailurePredicate,
)
from social.graze.pdsclient.session.refresh import RefreshCoordinator, RefreshOperation
from social.graze.pdsclient.session.state import SessionChangeListener, SessionState
from social.graze.pdsclient.xrpc.chain import (
    ChainMiddlewareClient,
    DebugMiddleware,
    RequestMiddlewareBase,
    StatsdMiddleware,
)
from social.graze.pdsclient.xrpc.transport import RequestTransport
from social.graze.pdsclient.xrpc.url import QueryParams

logger = logging.getLogger(__name__)

UPLOAD_BLOB = "com.atproto.repo.uploadBlob"


class PdsClient:
    """
    Session-aware XRPC client for one account on one PDS.

    Args:
        base_url: PDS base URL; falls back to `settings.pds_url`
        settings: Client settings; read from the environment when omitted
        http_session: aiohttp session to borrow; the client creates and owns one otherwise
        refresh_operation: Replaces the default `com.atproto.server.refreshSession` call
        metrics_client: Destination for request and refresh metrics
        auth_failure_predicate: Decides which RequestErrors mean the access token expired
        session: Session to start with
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        settings: Optional[Settings] = None,
        http_session: Optional[ClientSession] = None,
        refresh_operation: Optional[RefreshOperation] = None,
        metrics_client: Optional[MetricsClient] = None,
        auth_failure_predicate: Optional[AuthFailurePredicate] = None,
        session: Optional[Session] = None,
    ) -> None:
        self.settings = settings or Settings()  # type: ignore
        self.metrics_client = metrics_client or NoOpMetricsClient()
        prefix = self.settings.statsd_prefix

        middleware: List[RequestMiddlewareBase] = [
            StatsdMiddleware(self.metrics_client, prefix=prefix)
        ]
        if self.settings.debug:
            middleware.append(DebugMiddleware())

        if http_session is not None:
            self._chain_client = ChainMiddlewareClient(
                client_session=http_session, middleware=middleware
            )
        else:
            self._chain_client = ChainMiddlewareClient(
                middleware=middleware,
                timeout=ClientTimeout(total=self.settings.request_timeout),
                headers={hdrs.USER_AGENT: self.settings.user_agent},
            )

        self.state = SessionState(
            base_url=base_url or self.settings.pds_url, session=session
        )
        self.transport = RequestTransport(self._chain_client, self.state)
        self.coordinator = RefreshCoordinator(
            self.state,
            refresh_operation or partial(refresh_session, self.transport),
            metrics_client=self.metrics_client,
            metrics_prefix=prefix,
        )
        self.executor = AuthenticatedRequestExecutor(
            self.transport,
            self.state,
            self.coordinator,
            auth_failure_predicate=auth_failure_predicate,
            metrics_client=self.metrics_client,
            metrics_prefix=prefix,
        )

    @classmethod
    async def from_subject(
        cls, subject: str, *, settings: Optional[Settings] = None, **kwargs: Any
    ) -> "PdsClient":
        """Create a client pointed at the PDS hosting a handle or DID.

        Raises:
            ConfigurationError: The subject could not be resolved to a PDS
        """
        settings = settings or Settings()  # type: ignore
        client = cls(settings=settings, **kwargs)
        try:
            pds = await resolve_pds_url(
                client.http_session, subject, settings.plc_hostname
            )
            if pds is None:
                raise ConfigurationError(f"Unable to resolve PDS for {subject}")
        except BaseException:
            await client.close()
            raise

        logger.debug(f"Resolved {subject} to {pds}")
        client.set_base_url(pds)
        return client

    @property
    def http_session(self) -> ClientSession:
        return self._chain_client.client_session

    @property
    def base_url(self) -> Optional[str]:
        return self.state.base_url

    def set_base_url(self, base_url: str) -> None:
        self.state.set_base_url(base_url)

    def clear_base_url(self) -> None:
        self.state.clear_base_url()

    def use_session(self, session: Optional[Session]) -> None:
        self.state.use_session(session)

    def get_session(self) -> Optional[Session]:
        return self.state.get_session()

    def on_session_change(self, listener: SessionChangeListener) -> Callable[[], None]:
        """Register a listener for sessions installed by a refresh.

        Returns a callable that removes the listener.
        """
        return self.state.on_session_change(listener)

    async def login(
        self,
        identifier: str,
        password: str,
        auth_factor_token: Optional[str] = None,
    ) -> Session:
        """Create a session and make it current. Listeners are not notified."""
        session = await create_session(
            self.transport, identifier, password, auth_factor_token
        )
        self.state.use_session(session)
        logger.info(f"Logged in as {session.handle} ({session.did})")
        return session

    async def refresh(self) -> Session:
        """Refresh the current session now, joining any refresh already in flight."""
        session = self.state.require_session()
        return await self.coordinator.refresh(session.refresh_token)

    async def call(
        self,
        method: str,
        nsid: str,
        *,
        params: Optional[QueryParams] = None,
        body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        """Authenticated XRPC call."""
        return await self.executor.execute(
            method, nsid, params=params, body=body, headers=headers
        )

    async def get(
        self,
        nsid: str,
        params: Optional[QueryParams] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        return await self.call(hdrs.METH_GET, nsid, params=params, headers=headers)

    async def post(
        self,
        nsid: str,
        body: Any = None,
        params: Optional[QueryParams] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        return await self.call(
            hdrs.METH_POST, nsid, params=params, body=body, headers=headers
        )

    async def request(
        self,
        method: str,
        nsid: str,
        *,
        params: Optional[QueryParams] = None,
        body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        """Unauthenticated XRPC call. No session is required or attached."""
        return await self.transport.execute(
            method, nsid, params=params, body=body, headers=headers
        )

    async def upload_blob(self, data: bytes, mime_type: str) -> Any:
        """Upload a blob and return the server's `{blob}` reference.

        The data must be bytes so the upload can be repeated after a session refresh.
        """
        return await self.post(
            UPLOAD_BLOB, body=bytes(data), headers={hdrs.CONTENT_TYPE: mime_type}
        )

    async def close(self) -> None:
        await self._chain_client.close()

    async def __aenter__(self) -> "PdsClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
