"""Tests for the byte-budgeted message queue."""

from unittest.mock import MagicMock

from hypothesis import given, settings
from hypothesis import strategies as st

from strategies import log_lines
from tls_syslog.buffer import MessageQueue, queued_size
from tls_syslog.overflow import CallableOverflowSink


def make_queue(limit=1_000_000):
    batches = []
    return MessageQueue(limit, CallableOverflowSink(batches.append)), batches


class TestQueuedSize:
    def test_ascii(self):
        assert queued_size("hello") == 6

    def test_multibyte(self):
        """Size counts UTF-8 bytes, not characters."""
        assert queued_size("ü") == 3
        assert queued_size("✓") == 4


class TestMessageQueue:
    """Tests for MessageQueue."""

    def test_push_tracks_size(self):
        queue, _ = make_queue()
        queue.push("abc")
        queue.push("ünï")

        assert len(queue) == 2
        assert queue.size_bytes == 4 + 6

    def test_drain_returns_fifo_and_empties(self, sample_lines):
        queue, _ = make_queue()
        for line in sample_lines:
            queue.push(line)

        assert queue.drain() == sample_lines
        assert len(queue) == 0
        assert queue.size_bytes == 0

    def test_overflow_spills_whole_queue_once(self):
        """Crossing the limit hands the full queue, trigger line included, to the sink."""
        queue, batches = make_queue(limit=20)

        assert queue.push("123456789") is False  # 10 bytes
        assert queue.push("123456789") is True  # 20 bytes, reaches the limit

        assert batches == [["123456789", "123456789"]]
        assert len(queue) == 0
        assert queue.size_bytes == 0

    def test_overflow_continues_after_spill(self):
        queue, batches = make_queue(limit=10)
        for i in range(5):
            queue.push(f"line-{i}")  # 7 bytes each

        assert batches == [["line-0", "line-1"], ["line-2", "line-3"]]
        assert queue.size_bytes == 7
        assert queue.drain() == ["line-4"]

    def test_sink_receives_snapshot(self):
        """The sink's list is not the queue's own storage."""
        sink = MagicMock()
        queue = MessageQueue(5, sink)
        queue.push("overflow!")

        (lines,), _ = sink.spill.call_args
        queue.push("x")
        assert lines == ["overflow!"]

    def test_spill_counts_stats(self):
        queue, batches = make_queue()
        queue.push("a")
        queue.push("b")
        queue.spill()

        assert batches == [["a", "b"]]
        assert queue.spill_count == 1
        assert queue.spilled_lines == 2

    def test_spill_empty_queue(self):
        """An empty queue still reaches the sink but does not count as a spill."""
        queue, batches = make_queue()
        queue.spill()

        assert batches == [[]]
        assert queue.spill_count == 0

    @given(st.lists(log_lines, max_size=50), st.integers(min_value=1, max_value=200))
    @settings(max_examples=100)
    def test_size_invariant(self, lines, limit):
        """size_bytes always equals the sum of UTF-8 length + 1 over queued lines."""
        queue, _ = make_queue(limit=limit)
        pending = []
        for line in lines:
            pending.append(line)
            if queue.push(line):
                pending = []
            assert queue.size_bytes == sum(queued_size(q) for q in pending)
            assert len(queue) == len(pending)

    @given(st.lists(log_lines, min_size=1, max_size=50), st.integers(min_value=1, max_value=500))
    @settings(max_examples=100)
    def test_nothing_lost_under_overflow(self, lines, limit):
        """Every pushed line is either still queued or was spilled, in order."""
        queue, batches = make_queue(limit=limit)
        for line in lines:
            queue.push(line)

        spilled = [line for batch in batches for line in batch]
        assert queue.size_bytes < limit
        assert spilled + queue.drain() == lines
