"""
Connection state machine and reconnect backoff for the syslog client.

The state machine is a pure function: given the current state and an event
it returns the resulting transition together with the side effects the
client has to carry out. Nothing in this module touches a socket or a
timer, so the whole transition table can be exercised without a network.

Usage:
    from tls_syslog.state import ConnectionState, Event, apply_event

    transition = apply_event(ConnectionState.CONNECTING, Event.ERROR)
    transition.state    # ConnectionState.WAIT_RECONNECT
    transition.effects  # (ANNOUNCE_DISCONNECTED, SCHEDULE_RECONNECT, GROW_BACKOFF)
"""

import logging
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection states of the syslog client."""

    CLOSED = "closed"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    TIMEOUT = "timeout"
    WAIT_RECONNECT = "wait-reconnect"  # Waiting for the backoff timer


class Event(Enum):
    """Transport events, each requesting one target state."""

    CONNECT = ConnectionState.CONNECTING
    SECURE_CONNECT = ConnectionState.CONNECTED
    ERROR = ConnectionState.ERROR
    TIMEOUT = ConnectionState.TIMEOUT
    CLOSE = ConnectionState.CLOSED

    @property
    def requested(self) -> ConnectionState:
        return self.value


class Effect(Enum):
    """Side effects produced by a transition, in execution order."""

    FLUSH_QUEUE = "flush_queue"
    ANNOUNCE_CONNECTED = "announce_connected"
    CLEAR_ERROR = "clear_error"
    RESET_BACKOFF = "reset_backoff"
    ANNOUNCE_DISCONNECTED = "announce_disconnected"
    SCHEDULE_RECONNECT = "schedule_reconnect"
    GROW_BACKOFF = "grow_backoff"


_LIVE_STATES = (ConnectionState.CONNECTING, ConnectionState.CONNECTED)


@dataclass(frozen=True)
class Transition:
    """Outcome of applying one event to a state."""

    state: ConnectionState  # State after the event
    visited: tuple[ConnectionState, ...] = ()  # States entered, in order
    effects: tuple[Effect, ...] = ()
    ignored: bool = False  # Request was refused (debug-logged by the client)

    @property
    def changed(self) -> bool:
        return bool(self.visited)


def apply_event(state: ConnectionState, event: Event) -> Transition:
    """
    Compute the transition for `event` arriving in `state`.

    Rules:
        - Timeouts only matter while establishing a connection; in the
          connected state they just mean the socket has been idle.
        - While waiting to reconnect, only a new connection attempt is
          accepted. A close request is dropped silently: a refused
          connection reports an error followed by a close, and the close
          must not start a second backoff cycle.
        - Entering the connected state flushes the queue, clears the error
          and resets the backoff.
        - Leaving connecting/connected for any other state passes through
          that state into wait-reconnect and schedules a reconnect.
    """
    requested = event.requested

    if event is Event.TIMEOUT and state is ConnectionState.CONNECTED:
        return Transition(state=state)

    if state is ConnectionState.WAIT_RECONNECT and requested is not ConnectionState.CONNECTING:
        if requested is ConnectionState.CLOSED:
            return Transition(state=state)
        return Transition(state=state, ignored=True)

    if state is not ConnectionState.CONNECTED and requested is ConnectionState.CONNECTED:
        return Transition(
            state=requested,
            visited=(requested,),
            effects=(
                Effect.FLUSH_QUEUE,
                Effect.ANNOUNCE_CONNECTED,
                Effect.CLEAR_ERROR,
                Effect.RESET_BACKOFF,
            ),
        )

    if state in _LIVE_STATES and requested not in _LIVE_STATES:
        return Transition(
            state=ConnectionState.WAIT_RECONNECT,
            visited=(requested, ConnectionState.WAIT_RECONNECT),
            effects=(
                Effect.ANNOUNCE_DISCONNECTED,
                Effect.SCHEDULE_RECONNECT,
                Effect.GROW_BACKOFF,
            ),
        )

    return Transition(state=requested, visited=(requested,))


@dataclass
class BackoffConfig:
    """Reconnect schedule, all times in milliseconds."""

    first_reconnect_time: int = 2000  # First reconnect after this many ms
    subsequent_reconnect_multiplier: float = 1.4  # Growth after each failure
    maximum_reconnect_time: int = 15000  # Upper bound for the delay


class ReconnectBackoff:
    """
    Deterministic exponential backoff.

    `current_delay` is the wait before the next reconnect attempt. The client
    reads it when scheduling the attempt, then calls `grow()`. A successful
    connection calls `reset()`.
    """

    def __init__(self, config: BackoffConfig | None = None):
        self.config = config or BackoffConfig()
        self._delay = self.config.first_reconnect_time

    @property
    def current_delay(self) -> int:
        """Delay in ms before the next reconnect attempt."""
        return self._delay

    def grow(self) -> int:
        """Multiply the delay, cap it and truncate to whole ms."""
        grown = min(
            self._delay * self.config.subsequent_reconnect_multiplier,
            self.config.maximum_reconnect_time,
        )
        # round() strips float noise first: 2800 * 1.4 is 3919.9999999999995
        self._delay = int(round(grown, 6))
        return self._delay

    def reset(self):
        """Back to the first reconnect time."""
        self._delay = self.config.first_reconnect_time

    def get_stats(self) -> dict:
        """Get backoff statistics."""
        return {
            "current_delay": self._delay,
            "max_delay": self.config.maximum_reconnect_time,
        }
