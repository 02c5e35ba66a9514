"""Mesh client: one participant's side of a full-mesh meeting.

Wires the signaling channel, session ledger, orchestrator and renegotiation
coordinator together around one FIFO event queue. A reader task turns relay
frames into events; transport callbacks, capture results and timers post
events too; a single processing task handles them one at a time, so ledger
mutations are never concurrent.

Example:
    ```python
    client = MeshClient(config, WebSocketSignalingClient(config.server_url),
                        AiortcTransportFactory(), MediaPlayerCapture(config.capture),
                        TileBoard())
    await client.start()
    await client.join(meet_id)
    client.toggle(MediaKind.CAMERA)
    ...
    await client.leave()
    await client.close()
    ```
"""

import asyncio
import logging

from src.common.types import MediaKind
from src.mesh.config import ClientConfig
from src.mesh.errors import CaptureError, MeshError, NotJoinedError, SignalingError
from src.mesh.events import (
    CompositionFailed,
    CompositionReady,
    ConnectionLost,
    LeaveRequested,
    LocalSignal,
    MeshEvent,
    RecreateSessions,
    RemoteMedia,
    ServerEvent,
    TransportConnected,
    TransportFailed,
)
from src.mesh.ledger import SessionLedger
from src.mesh.media import CaptureProvider, LocalMedia, MediaComposition
from src.mesh.orchestrator import SessionOrchestrator
from src.mesh.presentation import PresentationSink
from src.mesh.renegotiation import RenegotiationCoordinator
from src.mesh.signaling_client import SignalingChannel
from src.mesh.transport.base import PeerTransportFactory
from src.signaling.protocol import (
    AllUsersMessage,
    ConnectedMessage,
    ErrorMessage,
    JoinRoomMessage,
    ServerMessage,
    SignalReceivedMessage,
    SignalReturnedMessage,
    StreamUpdateNotification,
    UserJoinedMessage,
    UserLeftMessage,
)

logger = logging.getLogger(__name__)


class MeshClient:
    """Participant-side facade over the mesh components."""

    def __init__(
        self,
        config: ClientConfig,
        channel: SignalingChannel,
        transport_factory: PeerTransportFactory,
        capture: CaptureProvider,
        presentation: PresentationSink,
        identity_timeout_s: float = 10.0,
    ) -> None:
        """Initialize mesh client.

        Args:
            config: Client configuration
            channel: Signaling channel to the relay (not yet connected)
            transport_factory: Creates peer transport sessions
            capture: Capture provider for local media
            presentation: Sink for tile updates
            identity_timeout_s: How long start() waits for the relay to assign
                an identity
        """
        self.config = config
        self.channel = channel
        self.capture = capture
        self.presentation = presentation
        self.identity_timeout_s = identity_timeout_s

        self.ledger = SessionLedger()
        media = config.media
        self.local_media = LocalMedia(
            composition=MediaComposition(
                microphone=media.microphone,
                camera=media.camera,
                screen_share=media.screen_share,
            )
        )

        self._events: asyncio.Queue[MeshEvent] = asyncio.Queue()
        self.orchestrator = SessionOrchestrator(
            ledger=self.ledger,
            transport_factory=transport_factory,
            signaling=channel,
            presentation=presentation,
            local_media=self.local_media,
            peer_config=config.peer_connection,
            post_event=self.post_event,
        )
        self.coordinator = RenegotiationCoordinator(
            orchestrator=self.orchestrator,
            capture=capture,
            local_media=self.local_media,
            presentation=presentation,
            signaling=channel,
            settling_delay_s=config.settling_delay_s,
            post_event=self.post_event,
        )

        self._identity: asyncio.Future[str] | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._processor_task: asyncio.Task[None] | None = None
        self._ended = False

    @property
    def local_id(self) -> str | None:
        """Identity assigned by the relay."""
        return self.orchestrator.local_id

    @property
    def room_id(self) -> str | None:
        """Room the client is in, if any."""
        return self.coordinator.room_id

    @property
    def composition(self) -> MediaComposition:
        """Currently applied local media composition."""
        return self.local_media.composition

    def post_event(self, event: MeshEvent) -> None:
        """Enqueue an event for the processing task."""
        self._events.put_nowait(event)

    async def start(self) -> None:
        """Connect to the relay and capture the initial composition.

        Raises:
            SignalingError: If the relay is unreachable or never assigns an
                identity
        """
        loop = asyncio.get_running_loop()
        self._identity = loop.create_future()

        await self.channel.connect()
        self._processor_task = asyncio.create_task(self._process_events())
        self._reader_task = asyncio.create_task(self._read_channel())

        await self._capture_initial()

        try:
            local_id = await asyncio.wait_for(
                asyncio.shield(self._identity), timeout=self.identity_timeout_s
            )
        except TimeoutError as e:
            raise SignalingError("Relay did not assign an identity") from e

        logger.info("Mesh client started", extra={"local_id": local_id})

    async def _capture_initial(self) -> None:
        composition = self.local_media.composition
        try:
            tracks = await self.capture.acquire(composition)
        except CaptureError as e:
            logger.warning(
                "Initial capture failed, starting with media off",
                extra={"error": str(e)},
            )
            composition = MediaComposition(microphone=False, camera=False, screen_share=False)
            tracks = []

        self.local_media.composition = composition
        self.local_media.tracks = tuple(tracks)
        self.coordinator.reset_composition(composition)
        self.presentation.composition_changed(composition)

    async def join(self, room_id: str) -> None:
        """Join a room.

        Raises:
            MeshError: If the client is already in a room or has not started
            SignalingError: If the join frame cannot be sent
        """
        if self.local_id is None:
            raise MeshError("Client has not been started")
        if self.room_id is not None:
            raise MeshError(f"Already in room {self.room_id}")

        self.coordinator.room_id = room_id
        try:
            await self.channel.send(JoinRoomMessage(room_id=room_id, user_name=self.config.display_name))
        except SignalingError:
            self.coordinator.room_id = None
            raise

        logger.info("Joining room", extra={"room_id": room_id, "display_name": self.config.display_name})

    def set_media(self, kind: MediaKind, enabled: bool) -> asyncio.Task[None] | None:
        """Switch one outgoing media kind.

        Returns:
            The capture task, or None if the request was ignored
        """
        return self.coordinator.request_change(kind, enabled)

    def toggle(self, kind: MediaKind) -> asyncio.Task[None] | None:
        """Flip one outgoing media kind."""
        return self.set_media(kind, not self.coordinator.desired.is_enabled(kind))

    async def leave(self) -> None:
        """Leave the room: destroy every session, release capture, disconnect.

        Raises:
            NotJoinedError: If the client is not in a room
        """
        if self.room_id is None:
            raise NotJoinedError("Not in a room")

        done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self.post_event(LeaveRequested(done))
        await done

    async def wait_idle(self) -> None:
        """Wait until every posted event has been handled."""
        await self._events.join()

    async def close(self) -> None:
        """Stop the client and release everything it holds."""
        if self.room_id is not None and self._processor_task is not None and not self._processor_task.done():
            await self.leave()

        for task in (self._reader_task, self._processor_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        await self.coordinator.close()
        await self.channel.close()
        logger.info("Mesh client closed", extra={"local_id": self.local_id})

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def _read_channel(self) -> None:
        reason = "relay-closed"
        try:
            async for message in self.channel.messages():
                self.post_event(ServerEvent(message))
        except SignalingError as e:
            reason = str(e)
        self.post_event(ConnectionLost(reason))

    async def _process_events(self) -> None:
        while True:
            event = await self._events.get()
            try:
                await self._handle_event(event)
            except Exception:
                logger.exception("Error handling mesh event", extra={"event": type(event).__name__})
            finally:
                self._events.task_done()

    async def _handle_event(self, event: MeshEvent) -> None:
        if isinstance(event, ServerEvent):
            await self._handle_server_message(event.message)
        elif isinstance(event, LocalSignal):
            await self.orchestrator.handle_local_signal(event)
        elif isinstance(event, RemoteMedia):
            await self.orchestrator.handle_remote_media(event)
        elif isinstance(event, TransportConnected):
            await self.orchestrator.handle_connected(event)
        elif isinstance(event, TransportFailed):
            await self.orchestrator.handle_transport_error(event)
        elif isinstance(event, CompositionReady):
            await self.coordinator.apply_composition(event)
        elif isinstance(event, CompositionFailed):
            await self.coordinator.handle_composition_failed(event)
        elif isinstance(event, RecreateSessions):
            await self.coordinator.recreate_sessions(event)
        elif isinstance(event, LeaveRequested):
            await self._handle_leave(event)
        elif isinstance(event, ConnectionLost):
            await self._handle_connection_lost(event)

    async def _handle_server_message(self, message: ServerMessage) -> None:
        if isinstance(message, ConnectedMessage):
            self.orchestrator.local_id = message.id
            if self._identity is not None and not self._identity.done():
                self._identity.set_result(message.id)
        elif isinstance(message, AllUsersMessage):
            await self.orchestrator.handle_existing_members(message.users)
        elif isinstance(message, UserJoinedMessage):
            await self.orchestrator.handle_member_joined(message.id, message.user_name)
        elif isinstance(message, SignalReceivedMessage):
            await self.orchestrator.handle_signal_received(message.caller_id, message.signal)
        elif isinstance(message, SignalReturnedMessage):
            await self.orchestrator.handle_signal_returned(message.id, message.signal)
        elif isinstance(message, UserLeftMessage):
            await self.orchestrator.handle_member_left(message.id)
        elif isinstance(message, StreamUpdateNotification):
            await self.coordinator.handle_remote_stream_update(message)
        elif isinstance(message, ErrorMessage):
            logger.warning(
                "Relay rejected a frame",
                extra={"code": message.code, "error_message": message.message},
            )

    async def _handle_leave(self, event: LeaveRequested) -> None:
        try:
            self._ended = True
            await self.orchestrator.destroy_all(reason="local-leave")
            self.coordinator.cancel_timers()
            await self.coordinator.cancel_captures()
            await self.coordinator.release_capture()
            self.orchestrator.reset()
            room_id = self.coordinator.room_id
            self.coordinator.room_id = None
            await self.channel.close()
            self.presentation.meeting_ended("left")
            logger.info("Left room", extra={"room_id": room_id})
        except Exception as e:
            if not event.done.done():
                event.done.set_exception(e)
            raise
        else:
            if not event.done.done():
                event.done.set_result(None)

    async def _handle_connection_lost(self, event: ConnectionLost) -> None:
        """Tear down as leave does; the relay connection cannot be reused."""
        if self._identity is not None and not self._identity.done():
            self._identity.set_exception(SignalingError(f"Signaling connection lost: {event.reason}"))
        if self._ended:
            return

        self._ended = True
        logger.warning("Signaling connection lost", extra={"reason": event.reason})
        await self.orchestrator.destroy_all(reason="connection-lost")
        self.coordinator.cancel_timers()
        await self.coordinator.cancel_captures()
        await self.coordinator.release_capture()
        self.orchestrator.reset()
        self.coordinator.room_id = None
        self.presentation.meeting_ended("connection-lost")
