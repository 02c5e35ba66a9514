"""Base abstraction for peer transport sessions.

Defines the interface the orchestrator expects from the transport-session
library (ICE/SDP negotiation, media flow). The library is a black box:
it produces opaque local signals, consumes opaque remote signals and reports
back through a fixed set of callbacks.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from src.common.types import Role, SignalData
from src.mesh.config import PeerConnectionConfig
from src.mesh.media import MediaTrack


@dataclass(frozen=True)
class SessionCallbacks:
    """Lifecycle callbacks a transport session reports through.

    Passed explicitly at creation. Callbacks may be invoked from library
    internals at any time, so implementations only record or enqueue work.
    """

    on_local_signal: Callable[[SignalData], None]
    on_remote_media: Callable[[Any], None]
    on_connected: Callable[[], None]
    on_error: Callable[[Exception], None]


class PeerTransport(ABC):
    """One transport session with one remote peer.

    Owned by exactly one ledger session and released with it.
    """

    @abstractmethod
    async def start(self) -> None:
        """Begin negotiation.

        An initiator produces its first local signal; a receiver waits for
        the remote one.
        """

    @abstractmethod
    async def signal(self, data: SignalData) -> None:
        """Feed a remote signal into the session.

        Raises:
            ValueError: If the payload is malformed
            Exception: Library errors for signals the session cannot accept
        """

    @abstractmethod
    async def close(self) -> None:
        """Release the session and everything it holds.

        Safe to call more than once.
        """

    @property
    @abstractmethod
    def is_closed(self) -> bool:
        """Check if the session has been released."""


class PeerTransportFactory(ABC):
    """Creates transport sessions."""

    @abstractmethod
    def create_session(
        self,
        role: Role,
        config: PeerConnectionConfig,
        local_tracks: Sequence[MediaTrack],
        callbacks: SessionCallbacks,
    ) -> PeerTransport:
        """Create an idle transport session.

        Args:
            role: Initiator or receiver, fixed for the session's lifetime
            config: ICE configuration
            local_tracks: Outgoing tracks attached for the session's lifetime
            callbacks: Lifecycle callbacks

        Returns:
            PeerTransport: New session, not yet started
        """
