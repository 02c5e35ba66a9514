"""Signal relay server.

Tracks room membership, relays opaque signals between room members and
serves the meeting-token HTTP API.
"""

from src.signaling.config import SignalingConfig
from src.signaling.meetings import MeetingStore
from src.signaling.rooms import JoinResult, Participant, RoomRegistry
from src.signaling.server import SignalRelayServer, create_http_app

__all__ = [
    "JoinResult",
    "MeetingStore",
    "Participant",
    "RoomRegistry",
    "SignalRelayServer",
    "SignalingConfig",
    "create_http_app",
]
