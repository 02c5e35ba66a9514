"""Mesh client: session ledger, orchestrator and renegotiation coordinator.

Runs one participant's side of a full-mesh meeting: one transport session
per remote peer, negotiated through the signal relay.
"""

from src.mesh.client import MeshClient
from src.mesh.config import ClientConfig
from src.mesh.errors import (
    CaptureError,
    DuplicateSessionError,
    MeshError,
    NotJoinedError,
    SignalingError,
)
from src.mesh.ledger import PeerSession, SessionLedger, SessionState
from src.mesh.media import CaptureProvider, LocalMedia, MediaComposition
from src.mesh.orchestrator import SessionOrchestrator, SignalEnvelope
from src.mesh.presentation import PeerTile, PresentationSink, TileBoard
from src.mesh.renegotiation import RenegotiationCoordinator
from src.mesh.signaling_client import SignalingChannel, WebSocketSignalingClient

__all__ = [
    "CaptureError",
    "CaptureProvider",
    "ClientConfig",
    "DuplicateSessionError",
    "LocalMedia",
    "MediaComposition",
    "MeshClient",
    "MeshError",
    "NotJoinedError",
    "PeerSession",
    "PeerTile",
    "PresentationSink",
    "RenegotiationCoordinator",
    "SessionLedger",
    "SessionOrchestrator",
    "SessionState",
    "SignalEnvelope",
    "SignalingChannel",
    "SignalingError",
    "TileBoard",
    "WebSocketSignalingClient",
]
