"""Session orchestrator: forms, feeds and tears down peer transport sessions.

Role assignment:
- Peers listed in the ``all-users`` snapshot were there first, so the local
  participant (the later joiner) initiates to each of them.
- A peer announced by ``user-joined`` joined later and will initiate; the
  local participant creates a receiver session and waits.
- A ``signal-received`` from a peer without a session creates a receiver
  session ad hoc (the ``user-joined`` may have been missed or reordered).

Signals travel in a ``SignalEnvelope`` that names the sending session and,
once known, the session it targets. That lets the orchestrator tell a fresh
negotiation from a continuing one, and drop signals meant for sessions that
no longer exist.

Glare (both sides initiating, e.g. after simultaneous media changes) is
resolved by identity: the participant with the smaller identity stays
initiator and re-offers with a fresh session; the other yields and answers.

All methods must be called from the client's single event-processing task.
"""

import logging
from collections.abc import Callable, Sequence
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.common.types import Role, SignalData
from src.mesh.config import PeerConnectionConfig
from src.mesh.errors import SignalingError
from src.mesh.events import LocalSignal, MeshEvent, RemoteMedia, TransportConnected, TransportFailed
from src.mesh.ledger import PeerSession, SessionLedger, SessionState, new_session_tag
from src.mesh.media import LocalMedia
from src.mesh.presentation import PresentationSink
from src.mesh.transport.base import PeerTransportFactory, SessionCallbacks
from src.signaling.protocol import (
    ClientMessage,
    MemberInfo,
    ReturnSignalMessage,
    SendSignalMessage,
)

logger = logging.getLogger(__name__)

UNKNOWN_DISPLAY_NAME = "Unknown"


class SignalSender(Protocol):
    """The part of the signaling channel the orchestrator uses."""

    async def send(self, message: ClientMessage) -> None: ...


class SignalEnvelope(BaseModel):
    """Wrapper the mesh client puts around every library signal.

    The relay forwards it verbatim; only mesh clients read it.
    """

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., min_length=1, alias="sessionId")
    target_session_id: str | None = Field(default=None, alias="targetSessionId")
    data: dict[str, Any]

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class SessionOrchestrator:
    """Drives the session ledger from membership events, signals and callbacks."""

    def __init__(
        self,
        ledger: SessionLedger,
        transport_factory: PeerTransportFactory,
        signaling: SignalSender,
        presentation: PresentationSink,
        local_media: LocalMedia,
        peer_config: PeerConnectionConfig,
        post_event: Callable[[MeshEvent], None],
    ) -> None:
        """Initialize session orchestrator.

        Args:
            ledger: Session ledger (owned by the caller, mutated only here)
            transport_factory: Creates transport sessions
            signaling: Channel used to relay local signals
            presentation: Sink for tile updates
            local_media: Current local composition and tracks
            peer_config: ICE configuration for every session
            post_event: Enqueues an event for the event-processing task
        """
        self.ledger = ledger
        self.transport_factory = transport_factory
        self.signaling = signaling
        self.presentation = presentation
        self.local_media = local_media
        self.peer_config = peer_config
        self._post = post_event

        self.local_id: str | None = None
        # Known room members: peer identity → last known display name
        self.roster: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    async def handle_existing_members(self, members: Sequence[MemberInfo]) -> None:
        """Initiate a session to every member already in the room."""
        for member in members:
            if member.id == self.local_id:
                continue
            self.roster[member.id] = member.user_name
            existing = self.ledger.get(member.id)
            if existing is not None:
                existing.remote_display_name = member.user_name
                continue
            await self.create_session(member.id, member.user_name, Role.INITIATOR)

    async def handle_member_joined(self, peer_id: str, display_name: str) -> None:
        """Prepare a receiver session for a member that joined after us."""
        if peer_id == self.local_id:
            return
        self.roster[peer_id] = display_name
        existing = self.ledger.get(peer_id)
        if existing is not None:
            # Created ad hoc from an early signal
            existing.remote_display_name = display_name
            return
        await self.create_session(peer_id, display_name, Role.RECEIVER)

    async def handle_member_left(self, peer_id: str) -> None:
        """Forget a member and destroy its session."""
        self.roster.pop(peer_id, None)
        await self.destroy_session(peer_id, reason="peer-left")

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def create_session(
        self,
        peer_id: str,
        display_name: str,
        role: Role,
        remote_session_id: str | None = None,
    ) -> PeerSession | None:
        """Create, register and start a transport session with a peer.

        Outgoing tracks are the local tracks at this moment.

        Raises:
            DuplicateSessionError: If the peer already has a live session

        Returns:
            The new session, or None if it failed to start
        """
        session_id = new_session_tag()
        tracks = self.local_media.tracks
        transport = self.transport_factory.create_session(
            role, self.peer_config, tracks, self._callbacks_for(peer_id, session_id)
        )
        session = PeerSession(
            peer_id=peer_id,
            role=role,
            transport=transport,
            outgoing_tracks=tracks,
            remote_display_name=display_name,
            session_id=session_id,
            remote_session_id=remote_session_id,
        )
        self.ledger.add(session)
        self.presentation.peer_added(peer_id, display_name)

        logger.info(
            "Peer session created",
            extra={
                "peer_id": peer_id,
                "session_id": session_id,
                "role": role.value,
                "tracks": len(tracks),
            },
        )

        try:
            await transport.start()
        except Exception as e:
            logger.warning(
                "Peer session failed to start",
                extra={"peer_id": peer_id, "session_id": session_id, "error": str(e)},
            )
            await self.destroy_session(peer_id, reason="start-failed", session_id=session_id)
            return None

        return session

    async def destroy_session(
        self, peer_id: str, reason: str, session_id: str | None = None
    ) -> bool:
        """Destroy a peer's session: release the transport, drop the tile.

        Idempotent: destroying a missing or already destroyed session is a
        no-op.

        Args:
            peer_id: Remote peer identity
            reason: Why the session ends (for logs)
            session_id: When given, only destroy the session with this tag

        Returns:
            True if a session was destroyed
        """
        session = self.ledger.remove(peer_id, session_id)
        if session is None:
            return False

        session.transition_state(SessionState.DESTROYED)
        try:
            await session.transport.close()
        except Exception as e:
            logger.warning(
                "Error releasing transport session",
                extra={"peer_id": peer_id, "session_id": session.session_id, "error": str(e)},
            )
        self.presentation.peer_removed(peer_id)

        logger.info(
            "Peer session destroyed",
            extra={
                "peer_id": peer_id,
                "session_id": session.session_id,
                "role": session.role.value,
                "reason": reason,
            },
        )
        return True

    async def destroy_all(self, reason: str) -> list[tuple[str, str]]:
        """Destroy every session.

        Returns:
            ``(peer_id, remote_display_name)`` of every destroyed session
        """
        destroyed = []
        for session in self.ledger:
            destroyed.append((session.peer_id, session.remote_display_name))
            await self.destroy_session(session.peer_id, reason=reason)
        return destroyed

    def reset(self) -> None:
        """Forget the room (after leaving or losing the relay)."""
        self.roster.clear()

    def _callbacks_for(self, peer_id: str, session_id: str) -> SessionCallbacks:
        return SessionCallbacks(
            on_local_signal=lambda data: self._post(LocalSignal(peer_id, session_id, data)),
            on_remote_media=lambda media: self._post(RemoteMedia(peer_id, session_id, media)),
            on_connected=lambda: self._post(TransportConnected(peer_id, session_id)),
            on_error=lambda error: self._post(TransportFailed(peer_id, session_id, error)),
        )

    # ------------------------------------------------------------------
    # Inbound signals
    # ------------------------------------------------------------------

    async def handle_signal_received(self, caller_id: str, payload: dict[str, Any]) -> None:
        """Handle a signal sent by an initiating peer."""
        envelope = self._parse_envelope(caller_id, payload)
        if envelope is None:
            return

        display_name = self.roster.setdefault(caller_id, UNKNOWN_DISPLAY_NAME)
        session = self.ledger.get(caller_id)

        if session is None:
            pass

        elif session.role is Role.RECEIVER:
            if session.remote_session_id in (None, envelope.session_id):
                session.remote_session_id = envelope.session_id
                await self._feed(session, envelope.data)
                return
            # The peer replaced its initiator session
            await self.destroy_session(caller_id, reason="superseded")

        elif session.state is SessionState.CONNECTED:
            # We were connected as initiator, so the peer tore down and re-initiated
            await self.destroy_session(caller_id, reason="superseded")

        elif self.local_id is not None and self.local_id < caller_id:
            # Glare, we keep initiating. Re-offer so the peer's yielded
            # receiver has a live session to answer.
            logger.info(
                "Glare: keeping initiator role",
                extra={"peer_id": caller_id, "session_id": session.session_id},
            )
            await self.destroy_session(caller_id, reason="glare-reoffer")
            await self.create_session(caller_id, display_name, Role.INITIATOR)
            return

        else:
            logger.info(
                "Glare: yielding initiator role",
                extra={"peer_id": caller_id, "session_id": session.session_id},
            )
            await self.destroy_session(caller_id, reason="glare-yield")

        receiver = await self.create_session(
            caller_id, display_name, Role.RECEIVER, remote_session_id=envelope.session_id
        )
        if receiver is not None:
            await self._feed(receiver, envelope.data)

    async def handle_signal_returned(self, peer_id: str, payload: dict[str, Any]) -> None:
        """Handle a signal returned by a receiving peer."""
        envelope = self._parse_envelope(peer_id, payload)
        if envelope is None:
            return

        session = self.ledger.get(peer_id)
        if (
            session is None
            or session.role is not Role.INITIATOR
            or envelope.target_session_id != session.session_id
        ):
            logger.info(
                "Dropping stale signal",
                extra={"peer_id": peer_id, "target_session_id": envelope.target_session_id},
            )
            return

        if session.remote_session_id is None:
            session.remote_session_id = envelope.session_id
        await self._feed(session, envelope.data)

    def _parse_envelope(self, peer_id: str, payload: dict[str, Any]) -> SignalEnvelope | None:
        try:
            return SignalEnvelope.model_validate(payload)
        except ValidationError as e:
            logger.warning(
                "Dropping malformed signal",
                extra={"peer_id": peer_id, "error": str(e)},
            )
            return None

    async def _feed(self, session: PeerSession, data: SignalData) -> None:
        try:
            await session.transport.signal(data)
        except Exception as e:
            logger.warning(
                "Transport rejected signal",
                extra={"peer_id": session.peer_id, "session_id": session.session_id, "error": str(e)},
            )
            await self.destroy_session(
                session.peer_id, reason="signal-rejected", session_id=session.session_id
            )

    # ------------------------------------------------------------------
    # Transport callbacks
    # ------------------------------------------------------------------

    async def handle_local_signal(self, event: LocalSignal) -> None:
        """Relay a signal produced by one of our transport sessions."""
        session = self.ledger.lookup(event.peer_id, event.session_id)
        if session is None:
            logger.debug(
                "Ignoring signal from released session",
                extra={"peer_id": event.peer_id, "session_id": event.session_id},
            )
            return

        envelope = SignalEnvelope(
            session_id=session.session_id,
            target_session_id=session.remote_session_id,
            data=event.data,
        )
        message: ClientMessage
        if session.role is Role.INITIATOR:
            message = SendSignalMessage(
                user_to_signal=session.peer_id,
                caller_id=self.local_id,
                signal=envelope.to_payload(),
            )
        else:
            message = ReturnSignalMessage(caller_id=session.peer_id, signal=envelope.to_payload())

        try:
            await self.signaling.send(message)
        except SignalingError as e:
            # Connection loss is handled when the inbound stream ends
            logger.warning(
                "Failed to relay local signal",
                extra={"peer_id": session.peer_id, "error": str(e)},
            )

    async def handle_remote_media(self, event: RemoteMedia) -> None:
        """Attach remote media to the peer's tile."""
        session = self.ledger.lookup(event.peer_id, event.session_id)
        if session is None:
            return
        session.remote_media.append(event.media)
        self.presentation.peer_media(session.peer_id, list(session.remote_media))

    async def handle_connected(self, event: TransportConnected) -> None:
        """Mark a session connected."""
        session = self.ledger.lookup(event.peer_id, event.session_id)
        if session is None or session.state is not SessionState.NEGOTIATING:
            return
        session.transition_state(SessionState.CONNECTED)
        self.presentation.peer_connected(session.peer_id)

    async def handle_transport_error(self, event: TransportFailed) -> None:
        """Destroy a failed session. It is not retried."""
        session = self.ledger.lookup(event.peer_id, event.session_id)
        if session is None:
            return
        logger.warning(
            "Transport session failed",
            extra={"peer_id": event.peer_id, "session_id": event.session_id, "error": str(event.error)},
        )
        await self.destroy_session(event.peer_id, reason="transport-error", session_id=event.session_id)
