"""Byte-budgeted queue for lines that could not be sent yet."""

import logging

from .overflow import OverflowSink

logger = logging.getLogger(__name__)


def queued_size(line: str) -> int:
    """Bytes a line occupies in the queue: its UTF-8 length plus the newline."""
    return len(line.encode("utf-8")) + 1


class MessageQueue:
    """
    Ordered buffer of pending lines with a running byte count.

    When the byte count reaches `limit`, the whole queue (including the line
    that crossed the limit) is handed to the overflow sink and discarded.
    """

    def __init__(self, limit: int, sink: OverflowSink):
        self.limit = limit
        self.sink = sink
        self._lines: list[str] = []
        self._size_bytes = 0

        # Stats
        self.spill_count = 0
        self.spilled_lines = 0

    def __len__(self) -> int:
        return len(self._lines)

    @property
    def size_bytes(self) -> int:
        return self._size_bytes

    def push(self, line: str) -> bool:
        """
        Append a line. Returns True if this push made the queue overflow.
        """
        self._lines.append(line)
        self._size_bytes += queued_size(line)

        if self._size_bytes >= self.limit:
            logger.debug(f"Queue overflow at {self._size_bytes} bytes ({len(self._lines)} lines)")
            self.spill()
            return True
        return False

    def drain(self) -> list[str]:
        """Take every queued line in order and leave the queue empty."""
        lines = self._lines
        self._lines = []
        self._size_bytes = 0
        return lines

    def spill(self):
        """Hand the queue to the overflow sink, then discard it."""
        lines = self.drain()
        if lines:
            self.spill_count += 1
            self.spilled_lines += len(lines)
        self.sink.spill(lines)
