"""Authoritative in-memory session and server location for one client instance."""

import inspect
import logging
from typing import Any, Awaitable, Callable, List, Optional, Union

import sentry_sdk

from social.graze.pdsclient.errors import ConfigurationError, NoSessionError
from social.graze.pdsclient.model.session import Session
from social.graze.pdsclient.xrpc.url import normalize_base_url

logger = logging.getLogger(__name__)

SessionChangeListener = Callable[[Session], Union[None, Awaitable[Any]]]


class SessionState:
    """
    Holds the current session (or none) and the configured PDS base URL.

    Sessions are replaced wholesale. Listeners registered with `on_session_change` fire
    only when the refresh path installs a session through `install_session`; callers
    that set a session with `use_session` already know about it.
    """

    def __init__(
        self, base_url: Optional[str] = None, session: Optional[Session] = None
    ) -> None:
        self._base_url: Optional[str] = None
        self._session: Optional[Session] = session
        self._listeners: List[SessionChangeListener] = []

        if base_url is not None:
            self.set_base_url(base_url)

    @property
    def base_url(self) -> Optional[str]:
        return self._base_url

    def set_base_url(self, base_url: str) -> None:
        self._base_url = normalize_base_url(base_url)

    def clear_base_url(self) -> None:
        self._base_url = None

    def require_base_url(self) -> str:
        if self._base_url is None:
            raise ConfigurationError("No PDS base URL configured")
        return self._base_url

    def use_session(self, session: Optional[Session]) -> None:
        self._session = session

    def get_session(self) -> Optional[Session]:
        return self._session

    def require_session(self) -> Session:
        if self._session is None:
            raise NoSessionError()
        return self._session

    def on_session_change(self, listener: SessionChangeListener) -> Callable[[], None]:
        """Register a listener and return a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def install_session(self, session: Session) -> None:
        """Replace the current session and notify listeners.

        The session is installed before any listener runs. Listener failures are
        reported and logged but never undo the replacement.
        """
        self._session = session

        for listener in list(self._listeners):
            try:
                result = listener(session)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                sentry_sdk.capture_exception(e)
                logger.exception("Session change listener failed")
