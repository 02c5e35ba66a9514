"""Events processed by the mesh client's single event-processing task.

Every ledger mutation happens while handling one of these events, one at a
time, in the order they were posted. Transport callbacks, capture results
and timers never touch the ledger directly; they post an event.
"""

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, TypeAlias

from src.common.types import MediaKind, SignalData
from src.mesh.media import MediaComposition, MediaTrack
from src.signaling.protocol import ServerMessage


@dataclass(frozen=True)
class ServerEvent:
    """A frame received from the relay."""

    message: ServerMessage


@dataclass(frozen=True)
class LocalSignal:
    """A transport session produced a signal for its peer."""

    peer_id: str
    session_id: str
    data: SignalData


@dataclass(frozen=True)
class RemoteMedia:
    """A transport session received remote media."""

    peer_id: str
    session_id: str
    media: Any


@dataclass(frozen=True)
class TransportConnected:
    """A transport session reports media flowing."""

    peer_id: str
    session_id: str


@dataclass(frozen=True)
class TransportFailed:
    """A transport session reports an error."""

    peer_id: str
    session_id: str
    error: Exception


@dataclass(frozen=True)
class CompositionReady:
    """Capture for a requested composition succeeded."""

    kind: MediaKind
    enabled: bool
    composition: MediaComposition
    tracks: tuple[MediaTrack, ...]


@dataclass(frozen=True)
class CompositionFailed:
    """Capture for a requested composition failed."""

    kind: MediaKind
    enabled: bool
    error: Exception


@dataclass(frozen=True)
class RecreateSessions:
    """The settling delay after a local media change elapsed."""

    peers: Sequence[tuple[str, str]]


@dataclass(frozen=True)
class ConnectionLost:
    """The signaling connection ended."""

    reason: str


@dataclass(frozen=True)
class LeaveRequested:
    """The user asked to leave; ``done`` resolves once teardown finished."""

    done: asyncio.Future[None]


MeshEvent: TypeAlias = (
    ServerEvent
    | LocalSignal
    | RemoteMedia
    | TransportConnected
    | TransportFailed
    | CompositionReady
    | CompositionFailed
    | RecreateSessions
    | ConnectionLost
    | LeaveRequested
)
