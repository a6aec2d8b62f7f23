"""Connection and session state values."""
from __future__ import annotations

import enum
from dataclasses import dataclass


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERRORED = "errored"
    CLOSED = "closed"


@dataclass(frozen=True)
class ConnectionStatus:
    """A ConnectionState plus the failure detail when ERRORED."""

    state: ConnectionState
    detail: str | None = None

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def __str__(self) -> str:
        if self.state is ConnectionState.ERRORED and self.detail:
            return f"{self.state.value} ({self.detail})"
        return self.state.value


DISCONNECTED = ConnectionStatus(ConnectionState.DISCONNECTED)


class SessionPhase(enum.Enum):
    """Session lifecycle composed from the current connection's state.

    IDLE -> STARTING -> LIVE <-> DEGRADED -> STOPPED. DEGRADED is left only
    by an explicit restart or shutdown.
    """

    IDLE = "idle"
    STARTING = "starting"
    LIVE = "live"
    DEGRADED = "degraded"
    STOPPED = "stopped"


def phase_for(status: ConnectionStatus) -> SessionPhase:
    """Map a connection status onto the session phase it implies."""
    if status.state is ConnectionState.CONNECTED:
        return SessionPhase.LIVE
    if status.state in (ConnectionState.ERRORED, ConnectionState.CLOSED):
        return SessionPhase.DEGRADED
    return SessionPhase.STARTING
