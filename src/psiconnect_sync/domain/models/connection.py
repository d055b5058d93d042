"""
Connection State Machine
========================
Pure transition functions for the push channel.

State Machine:
    [CONNECTING] ──opened──► [OPEN] ──close_requested──► [CLOSING]
         ▲                      │                            │
         │                   closed                       closed
         │                      ▼                            ▼
         └──connect_requested── [CLOSED] ◄───────────────────┘
         │                      │
         │               reconnect_scheduled
         │                      ▼
         └──connect_requested── [RECONNECTING]

``connect_requested`` and ``closed`` are accepted from every state: a new
connection always supersedes the previous one, and any handle may drop.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from ...core.exceptions import InvalidTransitionError

# Close code for an intentional, clean close
NORMAL_CLOSURE = 1000
# Close code reported when the transport dropped without a close frame
ABNORMAL_CLOSURE = 1006


class ConnectionStatus(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"
    RECONNECTING = "reconnecting"


class ConnectionEvent(str, Enum):
    CONNECT_REQUESTED = "connect_requested"
    OPENED = "opened"
    CLOSE_REQUESTED = "close_requested"
    CLOSED = "closed"
    RECONNECT_SCHEDULED = "reconnect_scheduled"


_TRANSITIONS: Dict[Tuple[ConnectionStatus, ConnectionEvent], ConnectionStatus] = {
    (ConnectionStatus.CONNECTING, ConnectionEvent.OPENED): ConnectionStatus.OPEN,
    (ConnectionStatus.CONNECTING, ConnectionEvent.CLOSE_REQUESTED): ConnectionStatus.CLOSING,
    (ConnectionStatus.OPEN, ConnectionEvent.CLOSE_REQUESTED): ConnectionStatus.CLOSING,
    (ConnectionStatus.CLOSED, ConnectionEvent.RECONNECT_SCHEDULED): ConnectionStatus.RECONNECTING,
}


def transition(status: ConnectionStatus, event: ConnectionEvent) -> ConnectionStatus:
    """
    Return the status reached from ``status`` on ``event``.

    Raises:
        InvalidTransitionError: If the machine does not allow the transition
    """
    if event == ConnectionEvent.CONNECT_REQUESTED:
        return ConnectionStatus.CONNECTING
    if event == ConnectionEvent.CLOSED:
        return ConnectionStatus.CLOSED

    target = _TRANSITIONS.get((status, event))
    if target is None:
        raise InvalidTransitionError(status, event)
    return target


@dataclass(frozen=True)
class ReconnectDecision:
    """Outcome of a close: whether to retry, after how long, and which attempt it is."""
    reconnect: bool
    delay_seconds: float = 0.0
    attempt: int = 0
    reason: str = ""


@dataclass(frozen=True)
class ReconnectPolicy:
    """
    Fixed-budget, fixed-delay reconnection.

    The delay does not grow between attempts; changing retry timing changes
    observable behavior for servers coming back from a restart.
    """
    max_attempts: int = 5
    delay_seconds: float = 3.0
    enabled: bool = True

    def __post_init__(self):
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")

    def decide(self, close_code: Optional[int], intentional: bool, attempts_made: int) -> ReconnectDecision:
        """
        Decide what follows a close.

        Args:
            close_code: Close code reported by the transport (None if unknown)
            intentional: True when the close came from ``disconnect()`` or a superseding connect
            attempts_made: Reconnect attempts already made since the last successful open
        """
        if intentional or close_code == NORMAL_CLOSURE:
            return ReconnectDecision(False, reason="clean_close")
        if not self.enabled:
            return ReconnectDecision(False, reason="reconnect_disabled")
        if attempts_made >= self.max_attempts:
            return ReconnectDecision(False, attempt=attempts_made, reason="budget_exhausted")
        return ReconnectDecision(
            True,
            delay_seconds=self.delay_seconds,
            attempt=attempts_made + 1,
            reason="abnormal_close"
        )


def should_reconnect_on_visible(status: ConnectionStatus, visible: bool) -> bool:
    """Visibility regained while not open is a fresh signal, independent of the retry budget."""
    return visible and status != ConnectionStatus.OPEN
