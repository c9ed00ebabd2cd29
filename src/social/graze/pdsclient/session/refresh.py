"""Single-flight session refresh.

Any number of calls may discover an expired session at the same time. RefreshCoordinator
makes sure they all share one refresh operation (an "incident") and receive the same
result, whether that is a new Session or the same RefreshError.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

import sentry_sdk

from social.graze.pdsclient.errors import RefreshError
from social.graze.pdsclient.metrics import MetricsClient, NoOpMetricsClient
from social.graze.pdsclient.model.session import Session
from social.graze.pdsclient.session.state import SessionState

logger = logging.getLogger(__name__)

RefreshOperation = Callable[[str], Awaitable[Union[Session, Mapping[str, Any]]]]


def _retrieve_exception(task: "asyncio.Future[Session]") -> None:
    # Every waiter may have been cancelled before the incident finished; the failure
    # has already been logged and reported.
    if not task.cancelled():
        task.exception()


class RefreshCoordinator:
    """
    Coordinates at most one in-flight refresh per client instance.

    The incident slot holds the task running the injected refresh operation. The slot is
    checked and filled in `refresh` without any suspension point in between, so callers
    that observe an expired session in the same event loop turn always join one incident.
    """

    def __init__(
        self,
        state: SessionState,
        refresh_operation: RefreshOperation,
        metrics_client: Optional[MetricsClient] = None,
        metrics_prefix: str = "pdsclient",
    ) -> None:
        self._state = state
        self._refresh_operation = refresh_operation
        self._metrics_client = metrics_client or NoOpMetricsClient()
        self._metrics_prefix = metrics_prefix

        self._incident: Optional[asyncio.Task[Session]] = None
        self._incident_refresh_token: Optional[str] = None

    @property
    def in_flight(self) -> bool:
        return self._incident is not None

    @property
    def incident_refresh_token(self) -> Optional[str]:
        """Refresh token that started the in-flight incident, if any."""
        return self._incident_refresh_token

    def refresh(self, refresh_token: str) -> Awaitable[Session]:
        """
        Join the in-flight refresh incident, or start one.

        The refresh token only matters when a new incident is started; callers joining an
        existing incident get its result regardless of the token they hold.

        Returns:
            Awaitable resolving to the refreshed Session. Cancelling it does not cancel
            the shared incident.
        """
        if self._incident is None:
            self._incident = asyncio.ensure_future(self._run_incident(refresh_token))
            self._incident.add_done_callback(_retrieve_exception)
            self._incident_refresh_token = refresh_token
        else:
            logger.debug("Joining in-flight session refresh")

        return asyncio.shield(self._incident)

    async def _run_incident(self, refresh_token: str) -> Session:
        logger.info("Refreshing session")
        try:
            try:
                result = await self._refresh_operation(refresh_token)
                session = (
                    result
                    if isinstance(result, Session)
                    else Session.model_validate(result)
                )
            except Exception as e:
                self._metrics_client.increment(
                    f"{self._metrics_prefix}.session.refresh",
                    1,
                    tag_dict={"outcome": "failure"},
                )
                sentry_sdk.capture_exception(e)
                logger.warning(f"Session refresh failed: {e!r}")
                if isinstance(e, RefreshError):
                    raise
                raise RefreshError(f"Session refresh failed: {e}") from e

            await self._state.install_session(session)
            self._metrics_client.increment(
                f"{self._metrics_prefix}.session.refresh",
                1,
                tag_dict={"outcome": "success"},
            )
            logger.info(f"Session refreshed for {session.did}")
            return session
        finally:
            self._incident = None
            self._incident_refresh_token = None
