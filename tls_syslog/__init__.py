"""
tls_syslog - Resilient log forwarding to a syslog collector over TLS.

This package provides:
- SyslogClient: Queued, reconnecting TLS client with overflow spilling
- SyslogHandler / setup_logging: Bridge from the standard logging module
- state: The connection state machine and reconnect backoff
- overflow: Pluggable overflow sinks and exit hooks

Usage:
    from tls_syslog import SyslogClient

    client = SyslogClient("logs.example.com", 6514, appname="billing")
    client.log("Service started")

Example:
    # Forward standard logging from a synchronous program
    from tls_syslog import setup_logging

    setup_logging("logs.example.com", 6514, appname="billing")

    import logging
    logger = logging.getLogger(__name__)
    logger.info("Service started")
"""

from .buffer import MessageQueue
from .client import (
    BackgroundLoop,
    Delivery,
    SyslogClient,
    SyslogHandler,
    setup_logging,
)
from .config import ClientConfig, from_env
from .formatter import format_record, split_lines
from .overflow import (
    CallableOverflowSink,
    ExitHook,
    FileOverflowSink,
    OverflowSink,
    SignalExitHook,
)
from .state import (
    BackoffConfig,
    ConnectionState,
    Effect,
    Event,
    ReconnectBackoff,
    Transition,
    apply_event,
)
from .transport import ConfigError

__all__ = [
    # Client
    "SyslogClient",
    "SyslogHandler",
    "BackgroundLoop",
    "Delivery",
    "setup_logging",
    # Configuration
    "ClientConfig",
    "ConfigError",
    "from_env",
    # State machine
    "ConnectionState",
    "Event",
    "Effect",
    "Transition",
    "apply_event",
    "BackoffConfig",
    "ReconnectBackoff",
    # Queue and overflow
    "MessageQueue",
    "OverflowSink",
    "FileOverflowSink",
    "CallableOverflowSink",
    "ExitHook",
    "SignalExitHook",
    # Formatting
    "format_record",
    "split_lines",
]

__version__ = "1.0.0"
