"""Error taxonomy for PDS client operations.

Configuration and session errors are raised before any network call is made. Request
errors carry the XRPC error payload returned by the server. Connectivity failures are
aiohttp's own ClientError and are never wrapped.
"""

from typing import Any, Optional

from aiohttp import ClientError

TransportError = ClientError
"""Connectivity-level failure, propagated unchanged from aiohttp."""


class PdsClientError(Exception):
    """Base class for errors raised by the PDS client."""


class ConfigurationError(PdsClientError):
    """No usable server base URL is configured."""


class NoSessionError(PdsClientError):
    """An authenticated call was attempted without an active session."""

    def __init__(self, message: str = "No active session") -> None:
        super().__init__(message)


class RequestError(PdsClientError):
    """Non-success HTTP response from the PDS.

    Attributes:
        status: HTTP status code returned by the server
        code: XRPC error name from the `error` field, if any
        message: Server supplied message, or a synthesized one
    """

    def __init__(self, message: str, status: int, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code

    @staticmethod
    def from_response(status: int, body: Any) -> "RequestError":
        """Build an error from a response body shaped like `{error, message}`."""
        code: Optional[str] = None
        message: Optional[str] = None
        if isinstance(body, dict):
            raw_code = body.get("error")
            raw_message = body.get("message")
            if isinstance(raw_code, str) and raw_code:
                code = raw_code
            if isinstance(raw_message, str) and raw_message:
                message = raw_message

        if message is None:
            message = f"Request failed with status {status}"

        return RequestError(message, status, code)

    def __repr__(self) -> str:
        return f"RequestError(status={self.status}, code={self.code!r}, message={self.message!r})"


class RefreshError(PdsClientError):
    """The refresh operation failed for a refresh incident.

    Every caller waiting on the incident receives the same instance. The failure that
    caused it is available as `__cause__`.
    """

    @property
    def requires_login(self) -> bool:
        """True when the server rejected the refresh credential itself.

        Connectivity failures and other unexpected errors leave this False, which means
        trying again later may succeed without asking the user to sign in.
        """
        cause = self.__cause__
        return isinstance(cause, RequestError) and cause.status in (400, 401)
