"""
Configuration for the syslog client.

All options have working defaults; `appname` is the one most callers set.
Times are in milliseconds. Invalid values are rejected when the client is
constructed, never inside the retry loop.

Example:
    config = ClientConfig(
        appname="billing",
        tls_options={"cafile": "/etc/ssl/collector.pem"},
        queue_overflow_limit=200,
    )
    client = SyslogClient("logs.example.com", 6514, config)
"""

import os
import socket
import ssl
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .transport import ConfigError


def _console_log(*args):
    print(*args, flush=True)


class ClientConfig(BaseModel):
    """Options accepted by SyslogClient."""

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")

    # Identity used in every record
    appname: str = "app"
    hostname: str = Field(default_factory=socket.gethostname)
    procid: int | str = Field(default_factory=os.getpid)

    # Diagnostics. By default lines are only echoed to the console when they
    # could not be delivered, temporarily or permanently.
    also_log_to_console: bool = False
    debug: bool = False  # Log internal state changes
    quiet: bool = False  # Suppress normal diagnostics such as "connected to server"
    console_log: Callable[..., None] = _console_log

    # Transport. tls_options is turned into an SSLContext unless ssl_context is given.
    tls_options: dict[str, Any] = Field(default_factory=dict)
    ssl_context: ssl.SSLContext | None = None
    socket_timeout: int = Field(default=15000, ge=0)  # 0 disables the idle timeout

    # Exponential backoff for reconnecting
    first_reconnect_time: int = Field(default=2000, gt=0)
    subsequent_reconnect_multiplier: float = Field(default=1.4, ge=1.0)
    maximum_reconnect_time: int = Field(default=15000, gt=0)

    # When the queued lines reach this many bytes, the overflow handler gets
    # the queue and the queue is discarded.
    queue_overflow_limit: int = Field(default=1_000_000, gt=0)
    queue_overflow_handler: Any = None  # OverflowSink or callable(lines); default writes hourly files
    log_prefix: str | None = None  # Used by the default handler; defaults to f"{appname}-"
    overflow_directory: str = "."

    install_exit_handler: bool = True  # Flush the queue to the overflow handler on exit

    @model_validator(mode="after")
    def _check_backoff(self):
        if self.maximum_reconnect_time < self.first_reconnect_time:
            raise ValueError("maximum_reconnect_time must be >= first_reconnect_time")
        return self

    @property
    def effective_log_prefix(self) -> str:
        return self.log_prefix if self.log_prefix is not None else f"{self.appname}-"

    @classmethod
    def build(cls, config: "ClientConfig | None" = None, **options) -> "ClientConfig":
        """Merge keyword options over `config`, raising ConfigError on bad values."""
        try:
            if config is None:
                return cls(**options)
            if options:
                explicit = {name: getattr(config, name) for name in config.model_fields_set}
                return cls(**{**explicit, **options})
            return config
        except ValidationError as e:
            raise ConfigError(str(e)) from e


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").lower() in ("1", "true", "yes", "on")


def from_env(appname: str | None = None) -> tuple[str, int, ClientConfig]:
    """
    Read the collector address and basic options from the environment.

    Environment variables:
        TLS_SYSLOG_HOST: Collector host (required)
        TLS_SYSLOG_PORT: Collector port (default 6514)
        TLS_SYSLOG_APPNAME: Application name (optional)
        TLS_SYSLOG_CAFILE: CA bundle for verifying the collector (optional)
        TLS_SYSLOG_DEBUG / TLS_SYSLOG_QUIET: "1"/"true" to enable

    Returns:
        (host, port, config)
    """
    host = os.environ.get("TLS_SYSLOG_HOST")
    if not host:
        raise ConfigError("TLS_SYSLOG_HOST environment variable required")

    try:
        port = int(os.environ.get("TLS_SYSLOG_PORT", "6514"))
    except ValueError as e:
        raise ConfigError(f"Invalid TLS_SYSLOG_PORT: {e}") from e
    if not 0 < port < 65536:
        raise ConfigError(f"Invalid TLS_SYSLOG_PORT: {port}")

    options: dict[str, Any] = {
        "debug": _env_flag("TLS_SYSLOG_DEBUG"),
        "quiet": _env_flag("TLS_SYSLOG_QUIET"),
    }
    name = appname or os.environ.get("TLS_SYSLOG_APPNAME")
    if name:
        options["appname"] = name
    cafile = os.environ.get("TLS_SYSLOG_CAFILE")
    if cafile:
        options["tls_options"] = {"cafile": cafile}

    return host, port, ClientConfig.build(**options)
