"""
Mock transports for tls_syslog testing.
Stand in for asyncio's create_connection so tests can drive connection
events by hand.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any


class FakeTransport:
    """Records writes instead of sending them."""

    def __init__(self):
        self.written: list[bytes] = []
        self.aborted = False
        self.closed = False

    def write(self, data: bytes):
        self.written.append(data)

    def abort(self):
        self.aborted = True

    def close(self):
        self.closed = True

    def is_closing(self) -> bool:
        return self.aborted or self.closed

    def get_extra_info(self, name, default=None):
        return default

    @property
    def records(self) -> list[str]:
        return [data.decode("utf-8") for data in self.written]


@dataclass
class PendingConnection:
    """One call to the fake create_connection, waiting to be resolved."""

    protocol_factory: Any
    host: str
    port: int
    kwargs: dict[str, Any]
    future: asyncio.Future = field(default_factory=lambda: asyncio.get_running_loop().create_future())
    protocol: Any = None
    transport: FakeTransport | None = None

    def handshake(self) -> FakeTransport:
        """Complete the TLS handshake (connection_made) for this attempt."""
        self.transport = FakeTransport()
        self.protocol = self.protocol_factory()
        self.protocol.connection_made(self.transport)
        if not self.future.done():
            self.future.set_result((self.transport, self.protocol))
        return self.transport

    def fail(self, exc: BaseException):
        """Make the pending create_connection call raise."""
        self.future.set_exception(exc)

    def lose(self, exc: Exception | None = None):
        """Drop an established connection."""
        self.protocol.connection_lost(exc)


class FakeConnector:
    """Replacement for loop.create_connection."""

    def __init__(self):
        self.attempts: list[PendingConnection] = []

    async def __call__(self, protocol_factory, host, port, **kwargs):
        pending = PendingConnection(protocol_factory, host, port, kwargs)
        self.attempts.append(pending)
        return await pending.future

    @property
    def last(self) -> PendingConnection:
        return self.attempts[-1]


class ConsoleRecorder:
    """Collects everything the client prints to its console sink."""

    def __init__(self):
        self.lines: list[str] = []

    def __call__(self, *args):
        self.lines.append(" ".join(str(arg) for arg in args))

    def contains(self, fragment: str) -> bool:
        return any(fragment in line for line in self.lines)


async def settle(rounds: int = 5):
    """Let pending callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
