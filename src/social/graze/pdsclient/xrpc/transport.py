"""Single XRPC call execution against the configured PDS.

RequestTransport builds one HTTP call from a method, XRPC path, query parameters, headers
and body, runs it through the middleware chain and converts non-success responses into
RequestError. It knows nothing about sessions; authentication headers are supplied by the
caller.
"""

import io
import logging
from typing import Any, Dict, Mapping, Optional

from aiohttp import FormData, MultipartWriter, hdrs
from aiohttp.payload import BytesPayload

from social.graze.pdsclient.errors import RequestError
from social.graze.pdsclient.session.state import SessionState
from social.graze.pdsclient.xrpc.chain import ChainMiddlewareClient
from social.graze.pdsclient.xrpc.url import QueryParams, xrpc_url

logger = logging.getLogger(__name__)

RAW_BODY_TYPES = (
    bytes,
    bytearray,
    memoryview,
    io.IOBase,
    FormData,
    MultipartWriter,
    BytesPayload,
)


def is_raw_body(body: Any) -> bool:
    """True for binary and multipart payloads that must not be JSON encoded."""
    return isinstance(body, RAW_BODY_TYPES)


def buffer_body(body: Any) -> Any:
    """Turn one-shot bodies into ones that can be sent more than once.

    File-like bodies are read into bytes. A FormData can only be encoded once, so it is
    encoded here and the resulting payload is sent instead; file fields inside a form
    should be given as bytes. Any other body is returned unchanged.
    """
    if isinstance(body, FormData):
        return body()

    if not isinstance(body, io.IOBase):
        return body

    data = body.read()
    if isinstance(data, str):
        data = data.encode("utf-8")
    return data


class RequestTransport:
    def __init__(self, chain_client: ChainMiddlewareClient, state: SessionState) -> None:
        self._chain_client = chain_client
        self._state = state

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
        Execute one XRPC call and return the decoded response body.

        Args:
            method: HTTP method, GET or POST for XRPC
            path: XRPC method id, optionally prefixed with `/` or `/xrpc/`
            params: Query parameters; sequences become repeated keys, None is omitted
            body: JSON-serializable value, or a binary/multipart payload sent as-is
            headers: Extra request headers

        Returns:
            The decoded JSON body, text, bytes, or None for an empty response

        Raises:
            ConfigurationError: No base URL is configured; raised before any I/O
            RequestError: The server answered with a non-success status
            aiohttp.ClientError: Connectivity failures, propagated unchanged
        """
        base_url = self._state.require_base_url()
        url = xrpc_url(base_url, path, params)

        request_headers: Dict[str, str] = dict(headers or {})
        kwargs: Dict[str, Any] = {}

        if body is not None:
            if is_raw_body(body):
                # The content type comes from the caller or, for multipart, from aiohttp
                # so that the boundary is generated.
                kwargs["data"] = body
            else:
                kwargs["json"] = body
                if not any(k.lower() == "content-type" for k in request_headers):
                    request_headers[hdrs.CONTENT_TYPE] = "application/json"

        async with self._chain_client.request(
            method.upper(), url, headers=request_headers, **kwargs
        ) as (_, chain_response):
            if not chain_response.ok:
                error = RequestError.from_response(
                    chain_response.status, chain_response.body
                )
                logger.debug(f"XRPC {method.upper()} {path} failed: {error!r}")
                raise error

            return chain_response.body
