import argparse
import asyncio
import json
import logging
from logging.config import dictConfig
import os
import sys
from typing import Dict, List, Optional, Sequence, Tuple

import aiohttp
import sentry_sdk

from social.graze.pdsclient.client import PdsClient
from social.graze.pdsclient.config import Settings
from social.graze.pdsclient.errors import PdsClientError
from social.graze.pdsclient.metrics import create_metrics_client
from social.graze.pdsclient.resolve.identity import resolve_identity

logger = logging.getLogger(__name__)


def configure_logging():
    logging_config_file = os.getenv("LOGGING_CONFIG_FILE", "")

    if len(logging_config_file) > 0:
        with open(logging_config_file) as fl:
            dictConfig(json.load(fl))
        return

    logging.basicConfig()
    logging.getLogger().setLevel(logging.DEBUG)


def parse_param(value: str) -> Tuple[str, str]:
    key, sep, param_value = value.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected key=value, got {value!r}")
    return key, param_value


def group_params(pairs: Sequence[Tuple[str, str]]) -> Dict[str, List[str]]:
    """Collect repeated `--param` keys into lists."""
    params: Dict[str, List[str]] = {}
    for key, value in pairs:
        params.setdefault(key, []).append(value)
    return params


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pdsclient", description="AT Protocol PDS client"
    )
    commands = parser.add_subparsers(dest="command", required=True)

    resolve = commands.add_parser("resolve", help="Resolve handles and DIDs to a PDS")
    resolve.add_argument("subject", nargs="+", help="The subject(s) to resolve.")
    resolve.add_argument(
        "--plc-hostname",
        default=None,
        help="The PLC hostname to use for resolving did-method-plc DIDs.",
    )

    call = commands.add_parser("call", help="Make an authenticated XRPC call")
    call.add_argument("nsid", help="The XRPC method, e.g. app.bsky.actor.getProfile")
    call.add_argument(
        "--param",
        action="append",
        type=parse_param,
        default=[],
        help="Query parameter as key=value; repeat a key to send a list.",
    )
    call.add_argument("--post", action="store_true", help="Send a POST request.")
    call.add_argument("--body", default=None, help="JSON request body.")

    return parser


async def run_resolve(settings: Settings, args: argparse.Namespace) -> int:
    plc_hostname = args.plc_hostname or settings.plc_hostname
    failed = False

    async with aiohttp.ClientSession() as session:
        for subject in args.subject:
            identity = await resolve_identity(session, subject, plc_hostname)
            if identity is None:
                failed = True
                print(f"{subject}: unresolved")
                continue
            print(f"{subject}: {identity.did} {identity.handle or '-'} {identity.pds}")

    return 1 if failed else 0


async def run_call(settings: Settings, args: argparse.Namespace) -> int:
    if not settings.identifier or not settings.app_password:
        logger.error("IDENTIFIER and APP_PASSWORD must be set to make calls")
        return 2

    body = json.loads(args.body) if args.body is not None else None
    params = group_params(args.param)

    metrics_client = await create_metrics_client(
        settings.metrics_backend,
        host=settings.statsd_host,
        port=settings.statsd_port,
        debug=settings.debug,
    )

    try:
        if settings.pds_url:
            client = PdsClient(settings=settings, metrics_client=metrics_client)
        else:
            client = await PdsClient.from_subject(
                settings.identifier, settings=settings, metrics_client=metrics_client
            )

        async with client:
            await client.login(settings.identifier, settings.app_password)
            if args.post or body is not None:
                result = await client.post(args.nsid, body=body, params=params)
            else:
                result = await client.get(args.nsid, params=params)
    except (PdsClientError, aiohttp.ClientError) as e:
        logger.error(f"{args.nsid} failed: {e!r}")
        return 1
    finally:
        await metrics_client.close()

    if isinstance(result, (bytes, bytearray)):
        sys.stdout.buffer.write(result)
    elif isinstance(result, str):
        print(result)
    else:
        print(json.dumps(result, indent=2))
    return 0


async def realMain(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()  # type: ignore

    if settings.sentry_dsn:
        sentry_sdk.init(dsn=settings.sentry_dsn)

    if args.command == "resolve":
        return await run_resolve(settings, args)
    return await run_call(settings, args)


def invoke():
    configure_logging()
    sys.exit(asyncio.run(realMain()))


if __name__ == "__main__":
    invoke()
