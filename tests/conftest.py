"""Pytest configuration and shared fixtures for tls_syslog tests."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from mocks import ConsoleRecorder, FakeConnector
from tls_syslog import SyslogClient


@pytest.fixture
def console() -> ConsoleRecorder:
    """Console sink that records diagnostics."""
    return ConsoleRecorder()


@pytest.fixture
def spilled() -> list[list[str]]:
    """Collects every batch handed to the overflow handler."""
    return []


@pytest.fixture
def connector(mocker) -> FakeConnector:
    """Patch create_connection on every event loop with a FakeConnector."""
    fake = FakeConnector()
    mocker.patch("asyncio.base_events.BaseEventLoop.create_connection", new=fake)
    return fake


@pytest.fixture
def make_client(connector, console, spilled) -> Callable[..., SyslogClient]:
    """
    Build a SyslogClient on the fake transport.

    Must be called from inside a running event loop (an asyncio test).
    """
    clients = []

    def factory(**options) -> SyslogClient:
        options.setdefault("console_log", console)
        options.setdefault("queue_overflow_handler", spilled.append)
        options.setdefault("install_exit_handler", False)
        options.setdefault("socket_timeout", 0)
        options.setdefault("appname", "testapp")
        options.setdefault("hostname", "testhost")
        options.setdefault("procid", 4242)
        client = SyslogClient("collector.test", 6514, **options)
        clients.append(client)
        return client

    yield factory

    for client in clients:
        if not client._loop.is_closed():
            client.shutdown()


@pytest.fixture
def sample_lines() -> list[str]:
    """Return a handful of log lines, including non-ASCII."""
    return ["boot-1", "payment processed", "ünïcödé ✓", "last line"]
