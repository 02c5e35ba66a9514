"""Room membership registry for the signal relay.

Maps room tokens to the participants currently connected to them. Every
mutation and membership read for a room happens under that room's
``asyncio.Lock``, so a joiner's snapshot is linearizable with concurrent
joins and leaves in the same room. Rooms never share a lock.

Outbound frames are handed to ``Participant.deliver``, which must not block
(the relay server backs it with a per-connection queue). Delivering while
holding the room lock therefore keeps per-room event order identical for
every member without letting a slow socket stall the room.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from src.signaling.protocol import (
    AllUsersMessage,
    MemberInfo,
    ServerMessage,
    UserJoinedMessage,
    UserLeftMessage,
)

logger = logging.getLogger(__name__)


@dataclass
class Participant:
    """A connected participant.

    ``room_token`` is only mutated by the registry, and the relay server
    processes each connection's frames sequentially, so one participant is
    never joined and left concurrently.
    """

    identity: str
    deliver: Callable[[ServerMessage], None]
    name: str = ""
    room_token: str | None = None

    def info(self) -> MemberInfo:
        """Membership record sent to other participants."""
        return MemberInfo(id=self.identity, user_name=self.name)


@dataclass
class Room:
    """Live membership of one room."""

    token: str
    members: dict[str, Participant] = field(default_factory=dict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    closed: bool = False


@dataclass(frozen=True)
class JoinResult:
    """Outcome of a join: the caller's identity and who was already there."""

    identity: str
    existing_members: list[MemberInfo]


class RoomRegistry:
    """In-memory room membership table.

    Rooms are created on first join and dropped as soon as they are empty.
    Nothing is persisted; a process restart drops every room.

    Thread-safety: This class is NOT thread-safe. Use from a single event loop.
    """

    def __init__(self) -> None:
        self._rooms: dict[str, Room] = {}

    @property
    def room_count(self) -> int:
        """Number of rooms with at least one member."""
        return len(self._rooms)

    @property
    def participant_count(self) -> int:
        """Number of participants currently in a room."""
        return sum(len(room.members) for room in self._rooms.values())

    def members(self, room_token: str) -> list[MemberInfo]:
        """Current membership of a room (empty for unknown rooms)."""
        room = self._rooms.get(room_token)
        if room is None:
            return []
        return [member.info() for member in room.members.values()]

    @asynccontextmanager
    async def _locked_room(self, room_token: str) -> AsyncIterator[Room]:
        """Acquire the lock of a room, creating the room if needed.

        A room that emptied while we waited for its lock has been dropped
        from the table; retry against the current entry in that case.
        """
        while True:
            room = self._rooms.get(room_token)
            if room is None:
                room = Room(token=room_token)
                self._rooms[room_token] = room

            await room.lock.acquire()
            if not room.closed:
                break
            room.lock.release()

        try:
            yield room
        finally:
            if not room.members:
                room.closed = True
                if self._rooms.get(room_token) is room:
                    del self._rooms[room_token]
            room.lock.release()

    async def join(self, participant: Participant, room_token: str, name: str) -> JoinResult:
        """Register a participant in a room.

        Sends ``all-users`` (everyone but the caller) to the caller and
        ``user-joined`` to exactly the members in that snapshot. A participant
        already in a room leaves it first.

        Args:
            participant: Joining participant
            room_token: Room to join
            name: Display name announced to the room

        Returns:
            Caller identity and the membership snapshot excluding the caller
        """
        if participant.room_token is not None:
            await self.leave(participant)

        async with self._locked_room(room_token) as room:
            others = list(room.members.values())
            existing = [member.info() for member in others]

            participant.name = name
            participant.room_token = room_token
            room.members[participant.identity] = participant

            participant.deliver(AllUsersMessage(users=existing))
            joined = UserJoinedMessage(id=participant.identity, user_name=name)
            for member in others:
                member.deliver(joined)

        logger.info(
            "Participant joined room",
            extra={
                "room": room_token,
                "participant": participant.identity,
                "existing_members": len(existing),
            },
        )
        return JoinResult(identity=participant.identity, existing_members=existing)

    async def leave(self, participant: Participant) -> bool:
        """Remove a participant from its room and notify the rest.

        Idempotent: a participant that is not in a room produces no
        ``user-left`` broadcast.

        Returns:
            True if the participant was removed, False if it was not in a room
        """
        room_token = participant.room_token
        if room_token is None:
            return False

        async with self._locked_room(room_token) as room:
            if room.members.pop(participant.identity, None) is None:
                participant.room_token = None
                return False

            participant.room_token = None
            left = UserLeftMessage(id=participant.identity)
            for member in room.members.values():
                member.deliver(left)
            remaining = len(room.members)

        logger.info(
            "Participant left room",
            extra={
                "room": room_token,
                "participant": participant.identity,
                "remaining_members": remaining,
            },
        )
        return True

    async def relay(self, sender: Participant, target_id: str, message: ServerMessage) -> bool:
        """Forward a frame to one member of the sender's room.

        Fire-and-forget: a target that is gone (or never was in the sender's
        room) is dropped without surfacing anything to the sender.

        Returns:
            True if the frame was handed to the target, False if dropped
        """
        room_token = sender.room_token
        if room_token is None:
            logger.debug(
                "Dropping relay from participant outside any room",
                extra={"participant": sender.identity, "target": target_id},
            )
            return False

        async with self._locked_room(room_token) as room:
            target = room.members.get(target_id)
            if target is None or sender.identity not in room.members:
                logger.debug(
                    "Dropping relay to absent participant",
                    extra={"room": room_token, "participant": sender.identity, "target": target_id},
                )
                return False
            target.deliver(message)
            return True

    async def broadcast(self, sender: Participant, message: ServerMessage) -> int:
        """Deliver a frame to every other member of the sender's room.

        Returns:
            Number of members the frame was delivered to
        """
        room_token = sender.room_token
        if room_token is None:
            return 0

        async with self._locked_room(room_token) as room:
            if sender.identity not in room.members:
                return 0
            recipients = [m for m in room.members.values() if m.identity != sender.identity]
            for member in recipients:
                member.deliver(message)
            return len(recipients)
