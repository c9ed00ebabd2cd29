"""Session creation and refresh against a PDS."""

import logging
from typing import Any, Dict, Optional

from aiohttp import hdrs

from social.graze.pdsclient.model.session import Session
from social.graze.pdsclient.xrpc.transport import RequestTransport

logger = logging.getLogger(__name__)

CREATE_SESSION = "com.atproto.server.createSession"
REFRESH_SESSION = "com.atproto.server.refreshSession"


async def create_session(
    transport: RequestTransport,
    identifier: str,
    password: str,
    auth_factor_token: Optional[str] = None,
) -> Session:
    """Create a session with a handle or DID and a password or app password.

    Args:
        transport: Transport bound to the account's PDS
        identifier: Handle, DID or email of the account
        password: Account password or app password
        auth_factor_token: Email 2FA token, when the account requires one

    Raises:
        RequestError: The PDS rejected the credentials
    """
    payload: Dict[str, Any] = {"identifier": identifier, "password": password}
    if auth_factor_token is not None:
        payload["authFactorToken"] = auth_factor_token

    body = await transport.execute("POST", CREATE_SESSION, body=payload)
    session = Session.model_validate(body)

    if not session.active:
        logger.warning(f"Session created for inactive account {session.did}: {session.status}")

    return session


async def refresh_session(transport: RequestTransport, refresh_token: str) -> Session:
    """Exchange a refresh token for a new session.

    The refresh token is sent as the bearer credential. Refresh tokens are single use:
    the returned session carries a new refresh token that replaces the old one.
    """
    body = await transport.execute(
        "POST",
        REFRESH_SESSION,
        headers={hdrs.AUTHORIZATION: f"Bearer {refresh_token}"},
    )
    return Session.model_validate(body)
