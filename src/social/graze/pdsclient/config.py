"""
Configuration Module for the PDS Client

This module defines the configuration for the PDS client using Pydantic settings. Values are
loaded from environment variables with defaults suitable for development, so an embedding
application can construct `Settings()` and override only what it needs.

Key configuration areas include:
- Server location and identity resolution
- HTTP behavior (timeouts, user agent)
- Monitoring and error reporting
- Credentials used by the command line interface
"""

import logging
from typing import Literal, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings

from social.graze.pdsclient.errors import ConfigurationError
from social.graze.pdsclient.xrpc.url import normalize_base_url

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Settings for the PDS client.

    Environment variables are mapped to fields automatically, for example `PDS_URL`,
    `REQUEST_TIMEOUT` or `SENTRY_DSN`. Aliases are provided where the variable name is
    shared with other graze services (`TELEGRAF_HOST`, `TELEGRAF_PORT`).
    """

    # Environment and debugging settings
    debug: bool = False
    """
    Enable verbose request/response logging through the debug middleware.
    Set with DEBUG=true environment variable.
    """

    # Server location
    pds_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("pds_url", "pds_host"),
    )
    """
    Base URL of the Personal Data Server. Optional; when unset the PDS can be resolved
    from a handle or DID. Set with PDS_URL or PDS_HOST environment variables.
    """

    plc_hostname: str = "plc.directory"
    """
    Hostname for the PLC directory service for did:plc resolution.
    Set with PLC_HOSTNAME environment variable.
    """

    # HTTP behavior
    request_timeout: float = 30.0
    """
    Total timeout in seconds applied to each HTTP call, including the session refresh call.
    Set with REQUEST_TIMEOUT environment variable.
    """

    user_agent: str = "graze-pdsclient/0.1"
    """User-Agent header sent with every request."""

    # Monitoring and error reporting
    sentry_dsn: Optional[str] = None
    """
    Sentry DSN for error reporting. Optional, no error reporting if not set.
    Set with SENTRY_DSN environment variable.
    """

    metrics_backend: Literal["none", "telegraf"] = "none"
    """
    Metrics backend used for request timing and refresh counters.
    Set with METRICS_BACKEND environment variable.
    """

    statsd_host: str = Field(alias="TELEGRAF_HOST", default="telegraf")
    """
    StatsD/Telegraf host for metrics collection.
    Set with TELEGRAF_HOST environment variable.
    """

    statsd_port: int = Field(alias="TELEGRAF_PORT", default=8125)
    """
    StatsD/Telegraf port for metrics collection.
    Set with TELEGRAF_PORT environment variable.
    """

    statsd_prefix: str = "pdsclient"
    """Prefix for all StatsD metrics emitted by the client."""

    # Command line credentials
    identifier: Optional[str] = None
    """Handle or DID used by the `call` command to create a session."""

    app_password: Optional[str] = None
    """App password used by the `call` command to create a session."""

    @field_validator("pds_url", mode="before")
    @classmethod
    def normalize_pds_url(cls, v) -> Optional[str]:
        """
        Validate and normalize the pds_url setting.

        Empty values are treated as unset. Anything else must be an absolute http(s) URL;
        trailing slashes and a trailing `/xrpc` segment are removed.
        """
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        try:
            return normalize_base_url(v)
        except ConfigurationError as e:
            raise ValueError(str(e)) from e
