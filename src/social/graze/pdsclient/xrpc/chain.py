from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import json
from time import time
from types import TracebackType
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Generator,
    Optional,
    Sequence,
    Tuple,
)
import logging
from aiohttp import ClientResponse, ClientSession, hdrs
from multidict import CIMultiDictProxy
import sentry_sdk

from social.graze.pdsclient.metrics import MetricsClient

RequestFunc = Callable[..., Awaitable[ClientResponse]]

logger = logging.getLogger(__name__)

REDACTED_HEADERS = frozenset({"authorization"})


@dataclass
class ChainRequest:
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    kwargs: Dict[str, Any] = field(default_factory=dict)

    def redacted_headers(self) -> Dict[str, str]:
        return {
            k: ("<redacted>" if k.lower() in REDACTED_HEADERS else v)
            for k, v in self.headers.items()
        }


@dataclass
class ChainResponse:
    status: int
    headers: CIMultiDictProxy[str]
    body: str | bytes | dict[str, Any] | list[Any] | None = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @staticmethod
    async def from_aiohttp_response(response: ClientResponse) -> "ChainResponse":
        status = response.status
        headers = response.headers

        raw = await response.read()
        if not raw:
            return ChainResponse(status=status, headers=headers, body=None)

        content_type = headers.get(hdrs.CONTENT_TYPE, "")

        if content_type.startswith("application/json"):
            try:
                return ChainResponse(
                    status=status, headers=headers, body=json.loads(raw)
                )
            except ValueError:
                # Error pages are sometimes labelled as JSON.
                return ChainResponse(
                    status=status,
                    headers=headers,
                    body=raw.decode("utf-8", errors="replace"),
                )
        elif content_type.startswith("text/"):
            return ChainResponse(
                status=status,
                headers=headers,
                body=raw.decode(response.charset or "utf-8", errors="replace"),
            )
        return ChainResponse(status=status, headers=headers, body=raw)


NextChainResponseCallbackType = Tuple[ClientResponse, ChainResponse]

NextChainCallbackType = Callable[
    [ChainRequest], Awaitable[NextChainResponseCallbackType]
]


class RequestMiddlewareBase(ABC):
    @abstractmethod
    async def handle(
        self, next: NextChainCallbackType, request: ChainRequest
    ) -> NextChainResponseCallbackType:
        pass

    def handle_gen(self, next: NextChainCallbackType) -> NextChainCallbackType:
        async def next_invoke(request: ChainRequest) -> NextChainResponseCallbackType:
            return await self.handle(next, request)

        return next_invoke


class StatsdMiddleware(RequestMiddlewareBase):
    def __init__(self, metrics_client: MetricsClient, prefix: str = "pdsclient") -> None:
        super().__init__()
        self._metrics_client = metrics_client
        self._prefix = prefix

    async def handle(
        self, next: NextChainCallbackType, request: ChainRequest
    ) -> NextChainResponseCallbackType:
        start_time = time()
        tags = {"method": request.method.lower()}
        try:
            return await next(request)
        except Exception as e:
            sentry_sdk.capture_exception(e)
            raise
        finally:
            self._metrics_client.timer(
                f"{self._prefix}.request.time", time() - start_time, tag_dict=tags
            )
            self._metrics_client.increment(
                f"{self._prefix}.request.count", 1, tag_dict=tags
            )


class DebugMiddleware(RequestMiddlewareBase):
    async def handle(
        self, next: NextChainCallbackType, request: ChainRequest
    ) -> NextChainResponseCallbackType:
        logger.debug(
            f"Request: {request.method} {request.url} {request.redacted_headers()}"
        )
        response = await next(request)
        chain_response = response[1]
        logger.debug(
            f"Response: {chain_response.status} {dict(chain_response.headers)} {chain_response.body!r}"
        )
        return response


class EndOfLineChainMiddleware:
    def __init__(self, request_func: RequestFunc) -> None:
        super().__init__()
        self._request_func = request_func

    async def handle(self, request: ChainRequest) -> NextChainResponseCallbackType:
        response: ClientResponse = await self._request_func(
            request.method.lower(),
            request.url,
            headers=request.headers,
            **request.kwargs,
        )
        try:
            return response, await ChainResponse.from_aiohttp_response(response)
        except BaseException:
            response.close()
            raise


class ChainMiddlewareContext:
    def __init__(
        self,
        chain_callback: NextChainCallbackType,
        chain_request: ChainRequest,
    ) -> None:
        self._chain_callback = chain_callback
        self._chain_request = chain_request
        self.client_response: ClientResponse | None = None

    async def _do_request(self) -> Tuple[ClientResponse, ChainResponse]:
        client_response, chain_response = await self._chain_callback(
            self._chain_request
        )
        self.client_response = client_response
        return client_response, chain_response

    def __await__(self) -> Generator[Any, None, Tuple[ClientResponse, ChainResponse]]:
        return self.__aenter__().__await__()

    async def __aenter__(self) -> Tuple[ClientResponse, ChainResponse]:
        return await self._do_request()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self.client_response is not None and not self.client_response.closed:
            self.client_response.release()


class ChainMiddlewareClient:
    def __init__(
        self,
        client_session: ClientSession | None = None,
        middleware: Sequence[RequestMiddlewareBase] | None = None,
        **kwargs: Any,
    ) -> None:
        if client_session is not None:
            client = client_session
            owned = False
        else:
            client = ClientSession(**kwargs)
            owned = True

        self._middleware = list(middleware or [])
        self._client = client
        self._owned = owned

    @property
    def client_session(self) -> ClientSession:
        return self._client

    def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        **kwargs: Any,
    ) -> ChainMiddlewareContext:
        chain_request = ChainRequest(
            method=method,
            url=url,
            headers=dict(headers or {}),
            kwargs=kwargs,
        )

        end_of_line_middleware = EndOfLineChainMiddleware(
            request_func=self._client.request,
        )

        chain_callback: NextChainCallbackType = end_of_line_middleware.handle

        for mw in reversed(self._middleware):
            chain_callback = mw.handle_gen(chain_callback)

        return ChainMiddlewareContext(
            chain_callback=chain_callback,
            chain_request=chain_request,
        )

    async def close(self) -> None:
        # Borrowed sessions belong to the caller.
        if self._owned and not self._client.closed:
            await self._client.close()

    async def __aenter__(self) -> "ChainMiddlewareClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
