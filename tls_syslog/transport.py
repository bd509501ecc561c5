"""
TLS transport plumbing for the syslog client.

Everything socket-specific lives here: building the SSL context from the
user's options, turning connection errors into short human phrases, and the
asyncio protocol that reports transport events back to the client tagged
with the connection attempt they belong to.
"""

import asyncio
import errno
import logging
import socket
import ssl
from collections.abc import Mapping
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .client import SyslogClient

logger = logging.getLogger(__name__)

# Some of the more common errors in human-readable form
ERROR_PHRASES = {
    errno.ECONNREFUSED: "connection refused",
    errno.EHOSTUNREACH: "no route to host",
    errno.EADDRNOTAVAIL: "address not available",
}

TLS_OPTION_KEYS = frozenset(
    {
        "cafile",
        "capath",
        "cadata",
        "certfile",
        "keyfile",
        "password",
        "check_hostname",
        "verify",
        "server_hostname",
        "minimum_version",
    }
)


class ConfigError(ValueError):
    """Raised for configuration that can never work, at construction time."""


def describe_error(exc: BaseException) -> str:
    """Map a connection error to a short phrase for diagnostics."""
    if isinstance(exc, socket.gaierror):
        return "could not resolve hostname"

    code = getattr(exc, "errno", None)
    if isinstance(code, int) and not isinstance(exc, ssl.SSLError):
        if code in ERROR_PHRASES:
            return ERROR_PHRASES[code]
        return f"error {errno.errorcode.get(code, code)}"

    return f"error {exc}"


def build_ssl_context(tls_options: Mapping | None = None) -> ssl.SSLContext:
    """
    Build a client SSL context from a mapping of options.

    Recognized keys: cafile, capath, cadata (trust), certfile, keyfile,
    password (client certificate), check_hostname, verify (set False to
    skip certificate verification entirely), minimum_version
    (an ssl.TLSVersion). server_hostname is consumed by the connect call.
    """
    options = dict(tls_options or {})
    unknown = set(options) - TLS_OPTION_KEYS
    if unknown:
        raise ConfigError(f"Unknown TLS options: {', '.join(sorted(unknown))}")

    context = ssl.create_default_context(
        ssl.Purpose.SERVER_AUTH,
        cafile=options.get("cafile"),
        capath=options.get("capath"),
        cadata=options.get("cadata"),
    )

    if options.get("certfile"):
        context.load_cert_chain(
            options["certfile"],
            keyfile=options.get("keyfile"),
            password=options.get("password"),
        )

    if "check_hostname" in options:
        context.check_hostname = bool(options["check_hostname"])

    if options.get("verify", True) is False:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

    if options.get("minimum_version") is not None:
        context.minimum_version = options["minimum_version"]

    return context


def tune_socket(transport: asyncio.BaseTransport):
    """Enable keep-alive and send small writes immediately."""
    sock = transport.get_extra_info("socket")
    if sock is None:
        return
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
    except OSError as e:
        logger.debug(f"Could not set socket options: {e}")


class ForwarderProtocol(asyncio.Protocol):
    """
    Reports transport events of one connection attempt to the client.

    With an SSL context, asyncio calls connection_made only once the TLS
    handshake has completed, so it doubles as the secure-connect event.
    """

    def __init__(self, client: "SyslogClient", generation: int):
        self.client = client
        self.generation = generation
        self.transport: asyncio.BaseTransport | None = None

    def connection_made(self, transport: asyncio.BaseTransport):
        self.transport = transport
        self.client._handle_secure_connect(self.generation, transport)

    def data_received(self, data: bytes):
        # The collector never talks back
        pass

    def connection_lost(self, exc: Exception | None):
        if exc is not None:
            self.client._handle_error(self.generation, exc, self.transport)
        self.client._handle_close(self.generation, self.transport)
