"""Tests for transport helpers."""

import errno
import socket
import ssl
from unittest.mock import MagicMock

import pytest

from tls_syslog.transport import ForwarderProtocol, describe_error, tune_socket


class TestDescribeError:
    @pytest.mark.parametrize("exc, phrase", [
        (ConnectionRefusedError(errno.ECONNREFUSED, "Connection refused"), "connection refused"),
        (OSError(errno.EHOSTUNREACH, "No route to host"), "no route to host"),
        (OSError(errno.EADDRNOTAVAIL, "Cannot assign requested address"), "address not available"),
        (socket.gaierror(socket.EAI_NONAME, "Name or service not known"), "could not resolve hostname"),
        (ConnectionResetError(errno.ECONNRESET, "Connection reset by peer"), "error ECONNRESET"),
    ])
    def test_known_errors(self, exc, phrase):
        assert describe_error(exc) == phrase

    def test_error_without_errno(self):
        assert describe_error(OSError("Multiple exceptions")) == "error Multiple exceptions"

    def test_ssl_error_uses_message(self):
        exc = ssl.SSLError(1, "certificate verify failed")
        assert describe_error(exc).startswith("error ")
        assert "certificate verify failed" in describe_error(exc)


class TestTuneSocket:
    def test_sets_keepalive_and_nodelay(self):
        sock = MagicMock()
        transport = MagicMock()
        transport.get_extra_info.return_value = sock

        tune_socket(transport)

        sock.setsockopt.assert_any_call(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
        sock.setsockopt.assert_any_call(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

    def test_no_socket(self):
        transport = MagicMock()
        transport.get_extra_info.return_value = None
        tune_socket(transport)  # Must not raise


class TestForwarderProtocol:
    """The protocol reports events tagged with its attempt generation."""

    def test_connection_made(self):
        client = MagicMock()
        transport = MagicMock()
        protocol = ForwarderProtocol(client, generation=3)

        protocol.connection_made(transport)

        client._handle_secure_connect.assert_called_once_with(3, transport)

    def test_clean_close(self):
        client = MagicMock()
        transport = MagicMock()
        protocol = ForwarderProtocol(client, generation=3)
        protocol.connection_made(transport)

        protocol.connection_lost(None)

        client._handle_error.assert_not_called()
        client._handle_close.assert_called_once_with(3, transport)

    def test_abrupt_close_reports_error_first(self):
        client = MagicMock()
        transport = MagicMock()
        protocol = ForwarderProtocol(client, generation=3)
        protocol.connection_made(transport)
        exc = ConnectionResetError(errno.ECONNRESET, "reset")

        protocol.connection_lost(exc)

        client._handle_error.assert_called_once_with(3, exc, transport)
        client._handle_close.assert_called_once_with(3, transport)
