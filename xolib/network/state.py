"""Connection status tracking for the orchestrator."""

from __future__ import annotations

import enum
from dataclasses import dataclass


class ConnectionStatus(str, enum.Enum):
    """Client-side connection state machine."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class ConnectionTracker:
    """Current connection status plus transition bookkeeping."""

    state: ConnectionStatus = ConnectionStatus.DISCONNECTED
    transitions: int = 0

    def transition(self, next_state: ConnectionStatus) -> None:
        """Move into a new state, validating allowed transitions."""

        if not self._is_valid_transition(self.state, next_state):
            raise ValueError(f"Invalid transition {self.state.value} → {next_state.value}")
        self.state = next_state
        self.transitions += 1

    @staticmethod
    def _is_valid_transition(current: ConnectionStatus, nxt: ConnectionStatus) -> bool:
        # Only an explicit close() leaves the connect/reconnect cycle.
        allowed = {
            ConnectionStatus.DISCONNECTED: {ConnectionStatus.CONNECTING},
            ConnectionStatus.CONNECTING: {ConnectionStatus.CONNECTED, ConnectionStatus.DISCONNECTED},
            ConnectionStatus.CONNECTED: {ConnectionStatus.CONNECTING, ConnectionStatus.DISCONNECTED},
        }
        return nxt in allowed.get(current, set())
