"""
Overflow and exit strategies for queued log lines.

When the queue grows past its byte budget, or the process is about to exit,
the queued lines are handed to an OverflowSink. The sink alone is
responsible for keeping them somewhere safe; the queue is discarded right
after the call.

Usage:
    from tls_syslog.overflow import FileOverflowSink

    sink = FileOverflowSink(prefix="billing-", directory="/var/spool/billing")
    sink.spill(["line 1", "line 2"])  # appends to billing-2019-09-23T11.log
"""

import asyncio
import atexit
import logging
import signal
import threading
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

ConsoleLog = Callable[..., None]


@runtime_checkable
class OverflowSink(Protocol):
    """Receives a snapshot of queued lines and persists it."""

    def spill(self, lines: Sequence[str]) -> None: ...


class FileOverflowSink:
    """
    Default sink: append lines to an hourly file.

    The file is named `<prefix><UTC ISO-8601 timestamp truncated to the
    hour>.log`, so at most one file is produced per wall-clock hour.
    """

    def __init__(
        self,
        prefix: str = "app-",
        directory: str | Path = ".",
        console_log: ConsoleLog | None = None,
        quiet: bool = False,
        clock: Callable[[], datetime] | None = None,
    ):
        self.prefix = prefix
        self.directory = Path(directory)
        self.console_log = console_log or print
        self.quiet = quiet
        self._clock = clock or (lambda: datetime.now(UTC))

    def path_for(self, moment: datetime) -> Path:
        """Looks like 'app-2019-09-23T11.log'."""
        return self.directory / f"{self.prefix}{moment.astimezone(UTC).isoformat()[:13]}.log"

    def spill(self, lines: Sequence[str]) -> None:
        if not lines:
            return

        path = self.path_for(self._clock())
        content = "\n".join(lines) + "\n"
        size = len(content.encode("utf-8"))

        if not self.quiet:
            self.console_log(f"[syslog] writing {len(lines)} enqueued lines ({size} bytes) to {path}")

        # A megabyte is small enough to write synchronously
        with open(path, "a", encoding="utf-8") as f:
            f.write(content)


class CallableOverflowSink:
    """Adapts a plain `handler(lines)` function to the OverflowSink interface."""

    def __init__(self, handler: Callable[[list[str]], None]):
        self.handler = handler

    def spill(self, lines: Sequence[str]) -> None:
        # Empty lists are passed through; ignoring them is up to the handler
        self.handler(list(lines))


def as_overflow_sink(handler) -> OverflowSink | None:
    """Accept either a callable or a sink object."""
    if handler is None:
        return None
    if callable(handler):
        return CallableOverflowSink(handler)
    if isinstance(handler, OverflowSink):
        return handler
    raise TypeError(f"queue_overflow_handler must be an OverflowSink or callable, got {type(handler)!r}")


@runtime_checkable
class ExitHook(Protocol):
    """Arranges for `flush` to run when the process is going down."""

    def install(self, flush: Callable[[], None]) -> None: ...


class SignalExitHook:
    """
    Default exit hook.

    Registers `flush` with atexit and with the termination signals. On a
    signal the flush runs first, then the previously installed handler gets
    its turn; if there was none the process exits with 128 + signum.

    Given an event loop, the signal handlers run as loop callbacks so the
    flush never interleaves with other work on that loop.
    """

    def __init__(
        self,
        signals: Sequence[signal.Signals] | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        if signals is None:
            signals = [signal.SIGINT, signal.SIGTERM]
            if hasattr(signal, "SIGHUP"):
                signals.append(signal.SIGHUP)
        self.signals = tuple(signals)
        self.loop = loop
        self._previous: dict[int, object] = {}

    def install(self, flush: Callable[[], None]) -> None:
        atexit.register(self._run_flush, flush)

        if threading.current_thread() is not threading.main_thread():
            logger.warning("Exit hook installed off the main thread; only atexit flushing is active")
            return

        for sig in self.signals:
            self._previous[sig] = signal.getsignal(sig)
            if self.loop is not None:
                try:
                    self.loop.add_signal_handler(sig, self._handle, flush, sig, None)
                    continue
                except (NotImplementedError, RuntimeError) as e:
                    logger.debug(f"Loop signal handler unavailable for {sig!r}: {e}")
            signal.signal(sig, lambda signum, frame: self._handle(flush, signum, frame))

    def _run_flush(self, flush: Callable[[], None]):
        try:
            flush()
        except Exception:
            logger.exception("Flushing queued log lines at exit failed")

    def _handle(self, flush, signum, frame):
        self._run_flush(flush)

        previous = self._previous.get(signum)
        if callable(previous):
            previous(signum, frame)
            return
        if previous == signal.SIG_IGN:
            return
        raise SystemExit(128 + signum)
