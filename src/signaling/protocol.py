"""Signaling channel message protocol definitions.

Defines Pydantic models for the JSON frames exchanged between mesh clients
and the signal relay server. Every frame carries an ``event`` field naming
the event; payload fields use the camelCase names of the wire protocol
(``roomId``, ``userName``, ``callerID``...), mapped to snake_case attributes
through aliases.

Signals are opaque to the relay: ``signal`` fields are forwarded verbatim.
"""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from src.common.types import MediaKind


class WireModel(BaseModel):
    """Base for all frames: accepts both field names and wire aliases."""

    model_config = ConfigDict(populate_by_name=True)

    def to_json(self) -> str:
        """Serialize using wire (camelCase) field names."""
        return self.model_dump_json(by_alias=True)


class MemberInfo(WireModel):
    """Identity and display name of one room member."""

    id: str = Field(..., min_length=1, description="Participant identity")
    user_name: str = Field(..., alias="userName", description="Display name (may collide)")


# ---------------------------------------------------------------------------
# Client → Server
# ---------------------------------------------------------------------------


class JoinRoomMessage(WireModel):
    """Client → Server: join a room.

    Answered with ``all-users`` to the joiner and ``user-joined`` to everyone
    else in the room.
    """

    event: Literal["join-room"] = "join-room"
    room_id: str = Field(..., min_length=1, alias="roomId", description="Room token")
    user_name: str = Field(default="Metabro", alias="userName", description="Display name")


class SendSignalMessage(WireModel):
    """Client → Server: signal from an initiator to a peer."""

    event: Literal["send-signal"] = "send-signal"
    user_to_signal: str = Field(..., alias="userToSignal", description="Target identity")
    caller_id: str | None = Field(
        default=None,
        alias="callerID",
        description="Sender identity (informational, the relay stamps its own)",
    )
    signal: dict[str, Any] = Field(..., description="Opaque signal payload")


class ReturnSignalMessage(WireModel):
    """Client → Server: signal from a receiver back to its initiator."""

    event: Literal["return-signal"] = "return-signal"
    caller_id: str = Field(..., alias="callerID", description="Initiator identity")
    signal: dict[str, Any] = Field(..., description="Opaque signal payload")


class StreamUpdateMessage(WireModel):
    """Client → Server: best-effort hint that outgoing media changed."""

    event: Literal["stream-update"] = "stream-update"
    room_id: str = Field(..., alias="roomId", description="Room token")
    stream_type: MediaKind = Field(..., alias="streamType", description="Changed media kind")
    enabled: bool = Field(..., description="New state of the media kind")


# ---------------------------------------------------------------------------
# Server → Client
# ---------------------------------------------------------------------------


class ConnectedMessage(WireModel):
    """Server → Client: identity assigned to this connection.

    Sent once, immediately after the connection is accepted.
    """

    event: Literal["connected"] = "connected"
    id: str = Field(..., description="Connection-scoped participant identity")


class AllUsersMessage(WireModel):
    """Server → Client: membership snapshot, excluding the joiner."""

    event: Literal["all-users"] = "all-users"
    users: list[MemberInfo] = Field(default_factory=list)


class UserJoinedMessage(WireModel):
    """Server → Client: a new member joined the room."""

    event: Literal["user-joined"] = "user-joined"
    id: str
    user_name: str = Field(..., alias="userName")


class SignalReceivedMessage(WireModel):
    """Server → Client: signal relayed from an initiator."""

    event: Literal["signal-received"] = "signal-received"
    signal: dict[str, Any]
    caller_id: str = Field(..., alias="callerID")


class SignalReturnedMessage(WireModel):
    """Server → Client: signal relayed back from a receiver."""

    event: Literal["signal-returned"] = "signal-returned"
    signal: dict[str, Any]
    id: str


class UserLeftMessage(WireModel):
    """Server → Client: a member left the room."""

    event: Literal["user-left"] = "user-left"
    id: str


class StreamUpdateNotification(WireModel):
    """Server → Client: another member's outgoing media changed."""

    event: Literal["stream-update-notification"] = "stream-update-notification"
    from_user_id: str = Field(..., alias="fromUserId")
    stream_type: MediaKind = Field(..., alias="streamType")
    enabled: bool


class ErrorMessage(WireModel):
    """Server → Client: error notification for an invalid frame."""

    event: Literal["error"] = "error"
    message: str = Field(..., description="Error description")
    code: str = Field(default="INTERNAL_ERROR", description="Error code")


# Union type for all client → server messages
ClientMessage = JoinRoomMessage | SendSignalMessage | ReturnSignalMessage | StreamUpdateMessage

# Union type for all server → client messages
ServerMessage = (
    ConnectedMessage
    | AllUsersMessage
    | UserJoinedMessage
    | SignalReceivedMessage
    | SignalReturnedMessage
    | UserLeftMessage
    | StreamUpdateNotification
    | ErrorMessage
)

_client_adapter: TypeAdapter[ClientMessage] = TypeAdapter(
    Annotated[ClientMessage, Field(discriminator="event")]
)
_server_adapter: TypeAdapter[ServerMessage] = TypeAdapter(
    Annotated[ServerMessage, Field(discriminator="event")]
)


def parse_client_message(raw: str | bytes) -> ClientMessage:
    """Parse a client → server frame.

    Raises:
        pydantic.ValidationError: If the frame is not valid JSON, names an
            unknown event, or has invalid fields
    """
    return _client_adapter.validate_json(raw)


def parse_server_message(raw: str | bytes) -> ServerMessage:
    """Parse a server → client frame.

    Raises:
        pydantic.ValidationError: If the frame is not a known server event
    """
    return _server_adapter.validate_json(raw)
