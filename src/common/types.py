"""Common type aliases and enums shared by the relay server and mesh clients.

The relay never interprets signals, so the aliases here only name the
concepts both sides agree on:
- Identity types: participant identities and room tokens
- Signaling types: opaque negotiation payloads
- Media types: the kinds of outgoing media a participant can toggle
"""

from enum import Enum
from typing import Any, TypeAlias

ParticipantId: TypeAlias = str
"""Connection-scoped participant identity assigned by the relay.

Unique per connection. A reconnect produces a new identity.
"""

RoomToken: TypeAlias = str
"""Unguessable room token: 128 random bits, hex-encoded (32 characters)."""

SessionTag: TypeAlias = str
"""Locally generated tag naming one transport-session instance."""

SignalData: TypeAlias = dict[str, Any]
"""Opaque negotiation payload produced and consumed by the transport library.

Example:
    >>> offer: SignalData = {"type": "offer", "sdp": "v=0..."}
"""


class MediaKind(str, Enum):
    """Outgoing media a participant can toggle."""

    MICROPHONE = "microphone"
    CAMERA = "camera"
    SCREEN = "screen"


class Role(str, Enum):
    """Role of the local side in one transport session.

    Fixed for the lifetime of the session. The initiator produces the first
    signal (offer); the receiver answers.
    """

    INITIATOR = "initiator"
    RECEIVER = "receiver"
