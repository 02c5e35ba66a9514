"""Common utilities and type definitions.

This package provides shared types used by both the signal relay server and
the mesh client.
"""

from src.common.types import (
    MediaKind,
    ParticipantId,
    Role,
    RoomToken,
    SessionTag,
    SignalData,
)

__all__ = [
    "MediaKind",
    "ParticipantId",
    "Role",
    "RoomToken",
    "SessionTag",
    "SignalData",
]
