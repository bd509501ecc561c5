"""
TLS syslog client - resilient log forwarding to a remote collector.

The client connects as soon as it is created. `log()` can be used right
away: lines are queued while there is no connection and sent, in order, the
moment the connection is established. Lost connections are retried with
exponential backoff. If the queue grows too large it is handed to an
overflow handler (by default appended to an hourly file) and discarded.

Usage:
    from tls_syslog import SyslogClient

    # Inside a running event loop
    client = SyslogClient(
        "logs.example.com",
        6514,
        appname="billing",
        tls_options={"cafile": "/etc/ssl/collector.pem"},
    )
    client.log("Payment processed")

    # From synchronous code, via the logging module
    from tls_syslog import setup_logging

    setup_logging("logs.example.com", 6514, appname="billing")
    logging.getLogger(__name__).info("Service started")
"""

import asyncio
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from .buffer import MessageQueue
from .config import ClientConfig
from .formatter import format_record, split_lines
from .overflow import ExitHook, FileOverflowSink, SignalExitHook, as_overflow_sink
from .state import (
    BackoffConfig,
    ConnectionState,
    Effect,
    Event,
    ReconnectBackoff,
    Transition,
    apply_event,
)
from .transport import ForwarderProtocol, build_ssl_context, describe_error, tune_socket

logger = logging.getLogger(__name__)

StateCallback = Callable[[ConnectionState, ConnectionState], None]


class Delivery(Enum):
    """What happened to one logged line."""

    SENT = "sent"  # Written to the transport
    QUEUED = "queued"  # Held until the connection is back


@dataclass
class _Attempt:
    """One connection attempt and the resources it owns."""

    generation: int
    task: asyncio.Task | None = None
    transport: asyncio.BaseTransport | None = None
    timer: asyncio.TimerHandle | None = None

    def cancel_timer(self):
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None

    def destroy(self, graceful: bool = False):
        self.cancel_timer()
        if self.transport is not None:
            if graceful:
                self.transport.close()
            else:
                self.transport.abort()
        if self.task is not None and not self.task.done():
            self.task.cancel()


class SyslogClient:
    """
    Forwards log lines to a syslog collector over TLS.

    All state lives on one event loop: transport callbacks, timers and
    `log()` run there and never concurrently. Use `log_threadsafe()` (or
    SyslogHandler) from other threads.

    Each connection attempt gets a new generation number. Callbacks carry
    the generation they were created for; events from an older attempt are
    ignored and its transport is aborted.
    """

    def __init__(
        self,
        host: str,
        port: int,
        config: ClientConfig | None = None,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        exit_hook: ExitHook | None = None,
        on_state_change: StateCallback | None = None,
        **options,
    ):
        """
        Create the client and start connecting.

        Args:
            host: Collector host name or address
            port: Collector TLS port
            config: ClientConfig; keyword options override its fields
            loop: Event loop to run on (defaults to the running loop)
            exit_hook: Strategy that flushes the queue at exit
                (default SignalExitHook, only if install_exit_handler)
            on_state_change: Callback(old, new) for every state change,
                including the first transition to connecting
            **options: Any ClientConfig field

        Raises:
            ConfigError: Invalid options or TLS settings
        """
        self.config = ClientConfig.build(config, **options)
        cfg = self.config

        self.host = host
        self.port = port
        self.appname = cfg.appname
        self.hostname = cfg.hostname
        self.procid = cfg.procid
        self.also_log_to_console = cfg.also_log_to_console
        self.debug = cfg.debug
        self.quiet = cfg.quiet
        self.console_log = cfg.console_log
        self.socket_timeout = cfg.socket_timeout

        self._ssl_context = cfg.ssl_context or build_ssl_context(cfg.tls_options)
        self._server_hostname = cfg.tls_options.get("server_hostname")
        self._loop = loop or asyncio.get_running_loop()

        self._backoff = ReconnectBackoff(
            BackoffConfig(
                first_reconnect_time=cfg.first_reconnect_time,
                subsequent_reconnect_multiplier=cfg.subsequent_reconnect_multiplier,
                maximum_reconnect_time=cfg.maximum_reconnect_time,
            )
        )

        sink = as_overflow_sink(cfg.queue_overflow_handler) or FileOverflowSink(
            prefix=cfg.effective_log_prefix,
            directory=cfg.overflow_directory,
            console_log=self.console_log,
            quiet=self.quiet,
        )
        # Messages that could not be delivered because we were not connected
        self.queue = MessageQueue(cfg.queue_overflow_limit, sink)

        self._state = ConnectionState.CLOSED
        # More detail on the last error or timeout; cleared on connect
        self.error_state = ""
        self._generation = 0
        self._attempt: _Attempt | None = None
        self._closed = False
        self._flushed_count = 0
        self._state_change_callbacks: list[StateCallback] = []
        if on_state_change:
            self._state_change_callbacks.append(on_state_change)

        # Stats
        self._sent_count = 0
        self._connect_attempts = 0

        if cfg.install_exit_handler:
            hook = exit_hook or SignalExitHook(loop=self._loop)
            hook.install(self.flush_queue)

        if not self.quiet:
            self.console_log(f"[syslog] logging to syslog server at {self.host}:{self.port}")

        self.connect()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def next_reconnect_time(self) -> int:
        """Delay in ms that the next reconnect will wait."""
        return self._backoff.current_delay

    def on_state_change(self, callback: StateCallback):
        """Register a callback for state changes."""
        self._state_change_callbacks.append(callback)

    def _debug(self, message: str):
        logger.debug(message)
        if self.debug:
            self.console_log(f"[syslog ({self._state.value})]", message)

    def _set_state(self, new_state: ConnectionState):
        old_state = self._state
        self._debug(f"state = {new_state.value}")
        self._state = new_state

        for callback in self._state_change_callbacks:
            try:
                callback(old_state, new_state)
            except Exception as e:
                logger.warning(f"State change callback error: {e}")

    def _apply(self, event: Event, error: str | None = None) -> Transition:
        """Run one event through the state machine and carry out its effects."""
        transition = apply_event(self._state, event)

        if transition.ignored:
            self._debug(f"Ignore state change attempt (to {event.requested.value})")
            return transition
        if not transition.changed:
            return transition

        if error is not None:
            self.error_state = error
        # The idle timeout only guards connecting; a dead attempt must not time out later
        if ConnectionState.WAIT_RECONNECT in transition.visited and self._attempt is not None:
            self._attempt.cancel_timer()
        for state in transition.visited:
            self._set_state(state)
        for effect in transition.effects:
            self._run_effect(effect)
        return transition

    def _run_effect(self, effect: Effect):
        if effect is Effect.FLUSH_QUEUE:
            pending = self.queue.drain()
            self._flushed_count = len(pending)
            for line in pending:
                self.log(line)

        elif effect is Effect.ANNOUNCE_CONNECTED:
            if not self.quiet:
                if self._flushed_count:
                    self.console_log(
                        f"[syslog] connected to server, {self._flushed_count} queued messages sent"
                    )
                else:
                    self.console_log("[syslog] connected to server")

        elif effect is Effect.CLEAR_ERROR:
            self.error_state = ""

        elif effect is Effect.RESET_BACKOFF:
            self._backoff.reset()

        elif effect is Effect.ANNOUNCE_DISCONNECTED:
            if not self.quiet:
                wait = f"{0.001 * self._backoff.current_delay:.1f}"
                message = f"[syslog] could not connect to server ({self.error_state}), retrying in {wait} s"
                if self.debug:
                    message += f"; state = {self._state.value}"
                self.console_log(message)

        elif effect is Effect.SCHEDULE_RECONNECT:
            delay = self._backoff.current_delay
            self._loop.call_later(delay / 1000, self._reconnect, self._generation)

        elif effect is Effect.GROW_BACKOFF:
            self._backoff.grow()

    # ------------------------------------------------------------------
    # Connection attempts
    # ------------------------------------------------------------------

    def connect(self):
        """Start a new connection attempt, superseding any attempt in flight."""
        if self._closed:
            return

        previous = self._attempt
        self._generation += 1
        attempt = _Attempt(self._generation)
        self._attempt = attempt
        self._connect_attempts += 1

        if previous is not None:
            previous.destroy()

        self._apply(Event.CONNECT)

        attempt.task = self._loop.create_task(self._open(attempt.generation))
        if self.socket_timeout:
            attempt.timer = self._loop.call_later(
                self.socket_timeout / 1000, self._handle_timeout, attempt.generation
            )

    def reconnect(self):
        """Drop the current connection (if any) and connect again now."""
        self.connect()

    def _reconnect(self, generation: int):
        # A newer attempt makes this timer obsolete
        if generation != self._generation or self._closed:
            return
        self.connect()

    async def _open(self, generation: int):
        try:
            await self._loop.create_connection(
                lambda: ForwarderProtocol(self, generation),
                self.host,
                self.port,
                ssl=self._ssl_context,
                server_hostname=self._server_hostname,
            )
        except asyncio.CancelledError:
            self._handle_close(generation)
            raise
        except OSError as e:
            self._handle_error(generation, e)
            self._handle_close(generation)

    def _is_current(self, generation: int) -> bool:
        return self._attempt is not None and generation == self._generation

    def _handle_secure_connect(self, generation: int, transport: asyncio.BaseTransport):
        if not self._is_current(generation):
            self._debug("secure connect on old socket; destroying it")
            transport.abort()
            return

        attempt = self._attempt
        attempt.transport = transport
        attempt.cancel_timer()
        tune_socket(transport)
        self._apply(Event.SECURE_CONNECT)

    def _handle_error(
        self,
        generation: int,
        exc: BaseException,
        transport: asyncio.BaseTransport | None = None,
    ):
        phrase = describe_error(exc)
        if not self._is_current(generation):
            self._debug(f"socket error ({phrase}) on old socket; destroying it")
            if transport is not None:
                transport.abort()
            return

        self._debug(f"socket error ({phrase})")
        self._apply(Event.ERROR, error=phrase)

    def _handle_close(self, generation: int, transport: asyncio.BaseTransport | None = None):
        if not self._is_current(generation):
            if transport is not None:
                transport.abort()
            return

        self._apply(Event.CLOSE, error="connection closed")

    def _handle_timeout(self, generation: int):
        if not self._is_current(generation):
            return
        # No activity on an established connection is fine
        if self._state is ConnectionState.CONNECTED:
            return

        attempt = self._attempt
        self._apply(Event.TIMEOUT, error=f"no response in {0.001 * self.socket_timeout:.1f} s")
        attempt.destroy()

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def log(self, message) -> list[Delivery]:
        """
        Send `message` to the collector.

        Multi-line messages are sent one record per line; empty lines are
        discarded. Without a connection the lines are queued and sent as soon
        as the connection is established again.

        Returns:
            One Delivery per non-empty line.
        """
        outcomes = []

        for line in split_lines(message):
            if self.also_log_to_console:
                self.console_log(line)

            if self._state is ConnectionState.CONNECTED:
                record = format_record(line, self.appname, self.hostname, self.procid)
                self._attempt.transport.write(record.encode("utf-8"))
                self._sent_count += 1
                outcomes.append(Delivery.SENT)
                continue

            # Undeliverable lines are always echoed, even when quiet
            if self.debug:
                self.console_log(f"[q ({self._state.value})]", line)
            else:
                self.console_log("[q]", line)
            if self.queue.push(line):
                self._debug("queue overflow; queued lines handed to the overflow handler")
            outcomes.append(Delivery.QUEUED)

        return outcomes

    def log_threadsafe(self, message):
        """Like log(), callable from any thread. The outcome is not reported."""
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self._loop:
            self.log(message)
        else:
            self._loop.call_soon_threadsafe(self.log, message)

    def flush_queue(self):
        """Hand whatever is queued to the overflow handler now."""
        self.queue.spill()

    def shutdown(self):
        """Stop reconnecting, close the connection and flush the queue."""
        if self._closed:
            return
        self._closed = True

        # Every outstanding callback belongs to an older generation now
        self._generation += 1
        attempt, self._attempt = self._attempt, None
        if attempt is not None:
            attempt.destroy(graceful=True)

        if self._state is not ConnectionState.CLOSED:
            self._set_state(ConnectionState.CLOSED)
        self.flush_queue()

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_stats(self) -> dict:
        """Get forwarding statistics."""
        backoff = self._backoff.get_stats()
        return {
            "state": self._state.value,
            "sent_count": self._sent_count,
            "queued_count": len(self.queue),
            "queue_bytes": self.queue.size_bytes,
            "spilled_lines": self.queue.spilled_lines,
            "spill_count": self.queue.spill_count,
            "connect_attempts": self._connect_attempts,
            "next_reconnect_ms": backoff["current_delay"],
            "max_reconnect_ms": backoff["max_delay"],
            "last_error": self.error_state or None,
        }

    def format_status(self) -> str:
        """Get human-readable status string."""
        stats = self.get_stats()
        parts = [
            f"state={stats['state']}",
            f"sent={stats['sent_count']}",
            f"queued={stats['queued_count']}",
        ]
        if stats["spill_count"]:
            parts.append(f"spilled={stats['spilled_lines']}")
        if stats["last_error"]:
            parts.append(f"last_error='{stats['last_error'][:50]}'")
        return f"SyslogClient[{self.host}:{self.port}]: " + ", ".join(parts)


class SyslogHandler(logging.Handler):
    """
    Python logging handler that forwards records through a SyslogClient.

    Records from this package's own loggers are skipped so the client's
    diagnostics cannot feed back into itself.
    """

    def __init__(self, client: SyslogClient, min_level: int = logging.INFO):
        super().__init__(level=min_level)
        self.client = client

    def emit(self, record: logging.LogRecord):
        if record.name == "tls_syslog" or record.name.startswith("tls_syslog."):
            return
        try:
            self.client.log_threadsafe(self.format(record))
        except Exception:
            self.handleError(record)


class BackgroundLoop:
    """An event loop running in a daemon thread, for synchronous programs."""

    def __init__(self, name: str = "tls-syslog"):
        self.loop = asyncio.new_event_loop()
        self._started = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()
        self._started.wait()

    def _run(self):
        asyncio.set_event_loop(self.loop)
        self.loop.call_soon(self._started.set)
        self.loop.run_forever()

    def run(self, func: Callable, *args, timeout: float = 10.0, **kwargs):
        """Call func on the loop thread and wait for its result."""
        if not self.loop.is_running():
            return func(*args, **kwargs)

        async def call():
            return func(*args, **kwargs)

        return asyncio.run_coroutine_threadsafe(call(), self.loop).result(timeout)

    def stop(self, timeout: float = 5.0):
        if self.loop.is_running():
            self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout)


def setup_logging(
    host: str,
    port: int,
    min_level: int = logging.INFO,
    also_console: bool = True,
    **client_options,
) -> SyslogClient:
    """
    Forward Python logging to a syslog collector.

    Call this once at startup. The client runs on its own background event
    loop, so this works from plain synchronous programs.

    Args:
        host: Collector host
        port: Collector TLS port
        min_level: Minimum log level to forward
        also_console: Also log to console (default: True)
        **client_options: Additional ClientConfig options

    Returns:
        The SyslogClient (for stats)

    Example:
        setup_logging("logs.example.com", 6514, appname="billing")

        logger = logging.getLogger(__name__)
        logger.info("Service started")
    """
    install_exit_handler = client_options.pop("install_exit_handler", True)

    background = BackgroundLoop()
    client = background.run(
        SyslogClient,
        host,
        port,
        install_exit_handler=False,
        **client_options,
    )

    # Signals can only be hooked from the main thread; the flush itself
    # still runs on the client's loop.
    if install_exit_handler:
        SignalExitHook().install(lambda: background.run(client.flush_queue))

    handler = SyslogHandler(client, min_level=min_level)
    handler.setFormatter(logging.Formatter("%(message)s"))

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)

    if also_console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        root_logger.addHandler(console_handler)

    if root_logger.level == logging.NOTSET or root_logger.level > min_level:
        root_logger.setLevel(min_level)

    return client
