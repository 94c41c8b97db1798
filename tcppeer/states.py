"""
Peer State Machine - The lifecycle of a PeerSocket.

A handle has only three states, but keeping them explicit is what lets a
closed handle refuse I/O without touching a stale descriptor:

    CLOSED --connect--> CONNECTING --established--> CONNECTED
       ^                     |                          |
       +--------fail---------+                          |
       +-------------------close / fail-----------------+
    CLOSED --adopt--> CONNECTED   (descriptor accepted elsewhere)

Any I/O failure is a "fail" event: there is no partially usable connection.
"""

from enum import Enum, auto
from typing import Dict, Tuple


class PeerState(Enum):
    """Lifecycle states of a PeerSocket."""

    # No descriptor, or the descriptor has been torn down
    CLOSED = auto()

    # Socket created, connect() issued, waiting for completion
    CONNECTING = auto()

    # Connected; reads and writes are allowed
    CONNECTED = auto()

    def can_transfer(self) -> bool:
        """Check if reads and writes are allowed in this state."""
        return self == PeerState.CONNECTED

    def can_connect(self) -> bool:
        """Check if a connect attempt may start from this state."""
        return self == PeerState.CLOSED


_TRANSITIONS: Dict[Tuple[PeerState, str], PeerState] = {
    (PeerState.CLOSED, "connect"): PeerState.CONNECTING,
    (PeerState.CLOSED, "adopt"): PeerState.CONNECTED,
    (PeerState.CONNECTING, "established"): PeerState.CONNECTED,
    (PeerState.CONNECTING, "fail"): PeerState.CLOSED,
    (PeerState.CONNECTING, "close"): PeerState.CLOSED,
    (PeerState.CONNECTED, "fail"): PeerState.CLOSED,
    (PeerState.CONNECTED, "close"): PeerState.CLOSED,
    # Closing twice is harmless
    (PeerState.CLOSED, "close"): PeerState.CLOSED,
    (PeerState.CLOSED, "fail"): PeerState.CLOSED,
}


class PeerStateMachine:
    """Validates lifecycle transitions."""

    def __init__(self, initial_state: PeerState = PeerState.CLOSED):
        self.state = initial_state

    def transition(self, event: str) -> bool:
        """
        Apply an event.

        Returns:
            False if the event is not legal in the current state (the state
            is left unchanged)
        """
        to_state = _TRANSITIONS.get((self.state, event))
        if to_state is None:
            return False

        self.state = to_state
        return True
