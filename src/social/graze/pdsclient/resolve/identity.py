"""AT Protocol identity resolution utilities.

Resolves handles to DIDs (DNS TXT and HTTPS well-known, queried concurrently) and DIDs to
their DID documents, from which the account's PDS endpoint and handle are read.
"""

import asyncio
import logging
from enum import IntEnum
from typing import Any, Dict, List, Optional
from urllib.parse import unquote

from aiodns import DNSResolver
from aiohttp import ClientError, ClientSession
from pydantic import BaseModel
import sentry_sdk

from social.graze.pdsclient.errors import ConfigurationError
from social.graze.pdsclient.xrpc.url import normalize_base_url

logger = logging.getLogger(__name__)

PDS_SERVICE_ID = "#atproto_pds"
PDS_SERVICE_TYPE = "AtprotoPersonalDataServer"


class SubjectType(IntEnum):
    """Kind of subject a caller handed in."""

    did_method_plc = 1
    did_method_web = 2
    hostname = 3


class ParsedSubject(BaseModel):
    subject_type: SubjectType
    subject: str


class ResolvedIdentity(BaseModel):
    """DID, handle (when the DID document claims one) and PDS base URL of an account."""

    did: str
    handle: Optional[str] = None
    pds: str


def parse_subject(subject: str) -> ParsedSubject:
    """Classify a handle or DID, stripping `at://` and `@` prefixes and whitespace."""
    subject = subject.strip().removeprefix("at://").removeprefix("@")

    if subject.startswith("did:plc:"):
        return ParsedSubject(subject_type=SubjectType.did_method_plc, subject=subject)
    if subject.startswith("did:web:"):
        return ParsedSubject(subject_type=SubjectType.did_method_web, subject=subject)
    return ParsedSubject(subject_type=SubjectType.hostname, subject=subject.lower())


async def resolve_handle_dns(
    handle: str, resolver: Optional[DNSResolver] = None
) -> Optional[str]:
    """Read the DID from the `_atproto.{handle}` TXT record."""
    resolver = resolver or DNSResolver()
    try:
        records = await resolver.query(f"_atproto.{handle}", "TXT")
    except Exception as e:
        logger.debug(f"DNS handle resolution failed for {handle}: {e!r}")
        return None

    for record in records or []:
        text = record.text
        if isinstance(text, bytes):
            text = text.decode("utf-8", errors="replace")
        if text.startswith("did="):
            return text.removeprefix("did=").strip()
    return None


async def resolve_handle_http(session: ClientSession, handle: str) -> Optional[str]:
    """Read the DID from `https://{handle}/.well-known/atproto-did`."""
    try:
        async with session.get(f"https://{handle}/.well-known/atproto-did") as resp:
            if resp.status != 200:
                return None
            body = (await resp.text()).strip()
    except (ClientError, asyncio.TimeoutError) as e:
        logger.debug(f"HTTP handle resolution failed for {handle}: {e!r}")
        return None

    if body.startswith("did:"):
        return body
    return None


async def resolve_handle(
    session: ClientSession, handle: str, resolver: Optional[DNSResolver] = None
) -> Optional[str]:
    """Resolve a handle to a DID, preferring the DNS answer when both methods succeed."""
    dns_did, http_did = await asyncio.gather(
        resolve_handle_dns(handle, resolver),
        resolve_handle_http(session, handle),
    )
    return dns_did or http_did


def did_document_url(plc_hostname: str, did: str) -> Optional[str]:
    if did.startswith("did:plc:"):
        return f"https://{plc_hostname}/{did}"

    if did.startswith("did:web:"):
        parts = did.removeprefix("did:web:").split(":")
        if not parts or not parts[0]:
            return None
        # The host segment percent-encodes its port, e.g. localhost%3A8080.
        parts[0] = unquote(parts[0])
        if len(parts) == 1:
            parts.append(".well-known")
        return "https://{inner}/did.json".format(inner="/".join(parts))

    return None


async def fetch_did_document(
    session: ClientSession, plc_hostname: str, did: str
) -> Optional[Dict[str, Any]]:
    url = did_document_url(plc_hostname, did)
    if url is None:
        logger.warning(f"Unsupported DID method: {did}")
        return None

    try:
        async with session.get(url) as resp:
            if resp.status != 200:
                logger.warning(f"DID document lookup for {did} failed: {resp.status}")
                return None
            document = await resp.json(content_type=None)
    except (ClientError, asyncio.TimeoutError, ValueError) as e:
        sentry_sdk.capture_exception(e)
        logger.error(f"DID document lookup for {did} failed: {e!r}")
        return None

    if not isinstance(document, dict):
        return None
    return document


def pds_endpoint(document: Dict[str, Any]) -> Optional[str]:
    """Return the PDS service endpoint declared in a DID document."""
    services: List[Any] = document.get("service") or []
    for service in services:
        if not isinstance(service, dict):
            continue
        service_id = str(service.get("id", ""))
        is_pds = (
            service_id == PDS_SERVICE_ID
            or service_id.endswith(PDS_SERVICE_ID)
            or service.get("type") == PDS_SERVICE_TYPE
        )
        endpoint = service.get("serviceEndpoint")
        if is_pds and isinstance(endpoint, str) and endpoint:
            return endpoint
    return None


def claimed_handle(document: Dict[str, Any]) -> Optional[str]:
    for aka in document.get("alsoKnownAs") or []:
        if isinstance(aka, str) and aka.startswith("at://"):
            return aka.removeprefix("at://")
    return None


async def resolve_identity(
    session: ClientSession,
    subject: str,
    plc_hostname: str = "plc.directory",
    resolver: Optional[DNSResolver] = None,
) -> Optional[ResolvedIdentity]:
    """Resolve a handle or DID to its DID, handle and PDS base URL.

    Returns None when any step fails; failures are logged rather than raised.
    """
    parsed = parse_subject(subject)

    if parsed.subject_type == SubjectType.hostname:
        did = await resolve_handle(session, parsed.subject, resolver)
        if did is None:
            logger.warning(f"Unable to resolve handle {parsed.subject}")
            return None
    else:
        did = parsed.subject

    document = await fetch_did_document(session, plc_hostname, did)
    if document is None:
        return None

    endpoint = pds_endpoint(document)
    if endpoint is None:
        logger.warning(f"No PDS service in DID document for {did}")
        return None

    try:
        pds = normalize_base_url(endpoint)
    except ConfigurationError:
        logger.warning(f"Invalid PDS endpoint for {did}: {endpoint}")
        return None

    return ResolvedIdentity(did=did, handle=claimed_handle(document), pds=pds)


async def resolve_pds_url(
    session: ClientSession,
    subject: str,
    plc_hostname: str = "plc.directory",
    resolver: Optional[DNSResolver] = None,
) -> Optional[str]:
    identity = await resolve_identity(session, subject, plc_hostname, resolver)
    if identity is None:
        return None
    return identity.pds
