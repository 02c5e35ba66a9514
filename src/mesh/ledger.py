"""Session ledger: the client's record of its peer transport sessions.

The ledger maps each remote peer identity to at most one live session and is
the single source of truth for "who do I have a transport session with, and
in what state". Sessions are stored by peer identity and tagged with a
session id; everything outside the ledger refers to a session by
``(peer_id, session_id)`` and looks it up again, so callbacks from a
superseded transport instance resolve to nothing.
"""

import logging
import uuid
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from src.common.types import Role
from src.mesh.errors import DuplicateSessionError
from src.mesh.media import MediaTrack
from src.mesh.transport.base import PeerTransport

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Peer session state machine states.

    State Transitions:
    - NEGOTIATING → CONNECTED (transport reports media flowing)
    - NEGOTIATING → DESTROYED (failure, peer left, superseded)
    - CONNECTED → DESTROYED (peer left, renegotiation, failure, local leave)

    States:
    - NEGOTIATING: Signals are being exchanged
    - CONNECTED: Media is flowing
    - DESTROYED: Transport released, no further transitions
    """

    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    DESTROYED = "destroyed"


# Valid state transitions
VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.NEGOTIATING: {SessionState.CONNECTED, SessionState.DESTROYED},
    SessionState.CONNECTED: {SessionState.DESTROYED},
    SessionState.DESTROYED: set(),  # Terminal state
}


def new_session_tag() -> str:
    """Generate a tag naming one transport-session instance."""
    return uuid.uuid4().hex[:12]


@dataclass
class PeerSession:
    """Transport session state between the local participant and one peer."""

    peer_id: str
    role: Role
    transport: PeerTransport
    outgoing_tracks: tuple[MediaTrack, ...]
    remote_display_name: str
    session_id: str = field(default_factory=new_session_tag)
    remote_session_id: str | None = None
    state: SessionState = SessionState.NEGOTIATING
    remote_media: list[Any] = field(default_factory=list)

    @property
    def is_live(self) -> bool:
        """Check if the session has not been destroyed."""
        return self.state is not SessionState.DESTROYED

    def transition_state(self, new_state: SessionState) -> None:
        """Transition session to a new state with validation.

        Args:
            new_state: Target state

        Raises:
            ValueError: If transition is invalid
        """
        if new_state not in VALID_TRANSITIONS.get(self.state, set()):
            raise ValueError(f"Invalid state transition: {self.state.value} → {new_state.value}")

        old_state = self.state
        self.state = new_state

        logger.info(
            "Peer session state transition",
            extra={
                "peer_id": self.peer_id,
                "session_id": self.session_id,
                "from_state": old_state.value,
                "to_state": new_state.value,
            },
        )


class SessionLedger:
    """Per-client map from peer identity to its live session.

    Invariant: at most one non-destroyed session per peer identity.

    Thread-safety: This class is NOT thread-safe. Mutate it from the client's
    single event-processing task only.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, PeerSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, peer_id: object) -> bool:
        return peer_id in self._sessions

    def __iter__(self) -> Iterator[PeerSession]:
        return iter(list(self._sessions.values()))

    def get(self, peer_id: str) -> PeerSession | None:
        """Return the live session for a peer, if any."""
        return self._sessions.get(peer_id)

    def lookup(self, peer_id: str, session_id: str) -> PeerSession | None:
        """Return the live session for a peer only if it is the tagged instance."""
        session = self._sessions.get(peer_id)
        if session is None or session.session_id != session_id:
            return None
        return session

    def add(self, session: PeerSession) -> None:
        """Register a new live session.

        Raises:
            DuplicateSessionError: If the peer already has a live session
        """
        if session.peer_id in self._sessions:
            raise DuplicateSessionError(session.peer_id)
        self._sessions[session.peer_id] = session

    def remove(self, peer_id: str, session_id: str | None = None) -> PeerSession | None:
        """Remove and return a peer's session.

        Args:
            peer_id: Remote peer identity
            session_id: When given, only remove the session with this tag

        Returns:
            The removed session, or None if there was nothing to remove
        """
        session = self._sessions.get(peer_id)
        if session is None:
            return None
        if session_id is not None and session.session_id != session_id:
            return None
        del self._sessions[peer_id]
        return session

    def peer_ids(self) -> list[str]:
        """Identities of every peer with a live session."""
        return list(self._sessions)

    def snapshot(self) -> dict[str, dict[str, str]]:
        """Role and state per peer, for logging and inspection."""
        return {
            peer_id: {"role": session.role.value, "state": session.state.value}
            for peer_id, session in self._sessions.items()
        }
