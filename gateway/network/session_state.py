"""Connection state tracking and resumable session identity."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from gateway.errors import InvalidParamError


class ConnectionState(enum.Enum):
    """Client-side gateway connection states."""

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    IDENTIFYING = "IDENTIFYING"
    READY = "READY"
    RECONNECTING = "RECONNECTING"
    CLOSING = "CLOSING"
    ERROR = "ERROR"


LIVE_STATES = frozenset(
    {
        ConnectionState.CONNECTING,
        ConnectionState.CONNECTED,
        ConnectionState.IDENTIFYING,
        ConnectionState.READY,
        ConnectionState.RECONNECTING,
    }
)


class InvalidTransition(ValueError):
    """Raised when a state change is not in the transition table."""


@dataclass
class StateTracker:
    """Current connection state with validated transitions."""

    state: ConnectionState = ConnectionState.DISCONNECTED
    last_transition_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    def transition(self, next_state: ConnectionState) -> ConnectionState:
        """Move into ``next_state``; returns the previous state."""

        if not self._is_valid_transition(self.state, next_state):
            raise InvalidTransition(f"Invalid transition {self.state.value} → {next_state.value}")
        previous = self.state
        self.state = next_state
        self.last_transition_at = datetime.now(tz=timezone.utc)
        return previous

    @staticmethod
    def _is_valid_transition(current: ConnectionState, nxt: ConnectionState) -> bool:
        allowed = {
            ConnectionState.DISCONNECTED: {ConnectionState.CONNECTING},
            ConnectionState.CONNECTING: {
                ConnectionState.CONNECTING,
                ConnectionState.CONNECTED,
                ConnectionState.RECONNECTING,
                ConnectionState.CLOSING,
                ConnectionState.ERROR,
            },
            ConnectionState.CONNECTED: {
                ConnectionState.IDENTIFYING,
                ConnectionState.CONNECTING,
                ConnectionState.RECONNECTING,
                ConnectionState.CLOSING,
                ConnectionState.ERROR,
            },
            ConnectionState.IDENTIFYING: {
                ConnectionState.READY,
                ConnectionState.CONNECTING,
                ConnectionState.RECONNECTING,
                ConnectionState.CLOSING,
                ConnectionState.ERROR,
            },
            ConnectionState.READY: {
                ConnectionState.CONNECTING,
                ConnectionState.RECONNECTING,
                ConnectionState.CLOSING,
                ConnectionState.ERROR,
            },
            ConnectionState.RECONNECTING: {
                ConnectionState.RECONNECTING,
                ConnectionState.CONNECTED,
                ConnectionState.CONNECTING,
                ConnectionState.CLOSING,
                ConnectionState.ERROR,
            },
            ConnectionState.CLOSING: {ConnectionState.DISCONNECTED},
            ConnectionState.ERROR: set(),
        }
        return nxt in allowed.get(current, set())


class SessionManager:
    """Session id and resume endpoint, replaced or cleared as a unit."""

    def __init__(self) -> None:
        self._session_id: Optional[str] = None
        self._resume_url: Optional[str] = None

    def __repr__(self) -> str:
        return f"SessionManager(session_id={self._session_id!r}, resume_url={self._resume_url!r})"

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def resume_url(self) -> Optional[str]:
        return self._resume_url

    @property
    def resumable(self) -> bool:
        return self._session_id is not None and self._resume_url is not None

    def set(self, session_id: str, resume_url: str) -> None:
        if not isinstance(session_id, str) or not session_id:
            raise InvalidParamError("session_id must be a non-empty string")
        if not isinstance(resume_url, str) or not resume_url:
            raise InvalidParamError("resume_url must be a non-empty string")
        self._session_id, self._resume_url = session_id, resume_url

    def clear(self) -> None:
        self._session_id = None
        self._resume_url = None


__all__ = [
    "ConnectionState",
    "InvalidTransition",
    "LIVE_STATES",
    "SessionManager",
    "StateTracker",
]
