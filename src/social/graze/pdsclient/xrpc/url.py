"""URL construction for XRPC calls.

Endpoints live at `{base_url}/xrpc/{nsid}`. Query parameters may be scalars or
sequences; sequences are sent as repeated keys (`reasons=like&reasons=follow`) and
`None` values are dropped.
"""

from typing import Any, List, Mapping, Optional, Tuple
from urllib.parse import urlencode, urlparse, urlunparse

from social.graze.pdsclient.errors import ConfigurationError

QueryParams = Mapping[str, Any]


def normalize_base_url(url: str) -> str:
    """Validate a PDS base URL and strip trailing `/` and `/xrpc` segments.

    Raises:
        ConfigurationError: If the URL is not an absolute http(s) URL
    """
    if not isinstance(url, str):
        raise ConfigurationError(f"Invalid PDS base URL: {url!r}")

    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigurationError(f"Invalid PDS base URL: {url!r}")

    path = parsed.path.rstrip("/")
    if path.endswith("/xrpc"):
        path = path.removesuffix("/xrpc")

    return urlunparse(parsed._replace(path=path, params="", query="", fragment=""))


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def encode_query(params: Optional[QueryParams]) -> List[Tuple[str, str]]:
    """Flatten query parameters into ordered key/value pairs."""
    pairs: List[Tuple[str, str]] = []
    if not params:
        return pairs

    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            for item in value:
                if item is not None:
                    pairs.append((key, _query_value(item)))
        else:
            pairs.append((key, _query_value(value)))

    return pairs


def xrpc_url(base_url: str, path: str, params: Optional[QueryParams] = None) -> str:
    """Join the base URL, XRPC method and query string.

    `path` may be given as `nsid`, `/nsid` or `/xrpc/nsid`.
    """
    method = path.lstrip("/")
    method = method.removeprefix("xrpc/")

    url = f"{base_url}/xrpc/{method}"

    pairs = encode_query(params)
    if pairs:
        url = f"{url}?{urlencode(pairs)}"

    return url
