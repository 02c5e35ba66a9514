"""Renegotiation coordinator.

Transport sessions are created with a fixed set of outgoing tracks, so a
local media change replaces every session:

1. Capture for the new composition runs in a background task; the result is
   posted back as ``CompositionReady`` or ``CompositionFailed``.
2. On success the new tracks become the local media, a ``stream-update`` hint
   goes to the room and every session is destroyed.
3. After the settling delay an initiator session is recreated for each peer
   that is still in the room and has no session yet.

The settling delay is best-effort: it only needs to outlast the hint's trip
through the relay so peers have torn down their side before the new offer
arrives. Late or crossing offers are handled by the orchestrator's glare and
stale-signal rules.
"""

import asyncio
import logging
from collections.abc import Callable, Sequence

from src.common.types import MediaKind, Role
from src.mesh.errors import SignalingError
from src.mesh.events import CompositionFailed, CompositionReady, MeshEvent, RecreateSessions
from src.mesh.ledger import SessionState
from src.mesh.media import CaptureProvider, LocalMedia, MediaComposition, MediaTrack
from src.mesh.orchestrator import SessionOrchestrator, SignalSender
from src.mesh.presentation import PresentationSink
from src.signaling.protocol import StreamUpdateNotification, StreamUpdateMessage

logger = logging.getLogger(__name__)


class RenegotiationCoordinator:
    """Turns local media changes into destroy-then-recreate cycles."""

    def __init__(
        self,
        orchestrator: SessionOrchestrator,
        capture: CaptureProvider,
        local_media: LocalMedia,
        presentation: PresentationSink,
        signaling: SignalSender,
        settling_delay_s: float,
        post_event: Callable[[MeshEvent], None],
    ) -> None:
        self.orchestrator = orchestrator
        self.capture = capture
        self.local_media = local_media
        self.presentation = presentation
        self.signaling = signaling
        self.settling_delay_s = settling_delay_s
        self._post = post_event

        self.room_id: str | None = None

        # Composition the user asked for, including changes still being captured
        self.desired = local_media.composition
        self._pending: set[MediaKind] = set()
        self._capture_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[None]] = set()
        self._timers: set[asyncio.TimerHandle] = set()

    @property
    def pending_kinds(self) -> frozenset[MediaKind]:
        """Media kinds with a change in flight."""
        return frozenset(self._pending)

    def request_change(self, kind: MediaKind, enabled: bool) -> asyncio.Task[None] | None:
        """Request a local media change.

        Returns:
            The capture task, or None if the request was ignored (no change, or
            a change for the same kind is already in flight)
        """
        if kind in self._pending:
            logger.info("Media change already in progress", extra={"kind": kind.value})
            return None

        if self.desired.is_enabled(kind) == enabled:
            return None

        self._pending.add(kind)
        self.desired = self.desired.with_kind(kind, enabled)

        task = asyncio.create_task(self._acquire(kind, enabled))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _acquire(self, kind: MediaKind, enabled: bool) -> None:
        async with self._capture_lock:
            composition = self.desired
            try:
                tracks = await self.capture.acquire(composition)
            except Exception as e:
                # Later requests must not build on the failed change
                self.desired = self.desired.with_kind(kind, not enabled)
                self._post(CompositionFailed(kind, enabled, e))
                return

            self._post(CompositionReady(kind, enabled, composition, tuple(tracks)))

    async def apply_composition(self, event: CompositionReady) -> None:
        """Make captured tracks the local media and renegotiate every session."""
        if event.kind not in self._pending:
            # Captures were cancelled (leave) after this result was posted
            await self.capture.release(_without(event.tracks, self.local_media.tracks))
            logger.debug("Dropping stale capture result", extra={"kind": event.kind.value})
            return
        self._pending.discard(event.kind)

        old_tracks = self.local_media.tracks
        self.local_media.composition = event.composition
        self.local_media.tracks = event.tracks
        self.presentation.composition_changed(event.composition)

        logger.info(
            "Local media composition applied",
            extra={
                "kind": event.kind.value,
                "enabled": event.enabled,
                "tracks": len(event.tracks),
                "in_room": self.room_id is not None,
            },
        )

        if self.room_id is not None:
            await self._send_hint(event.kind, event.enabled)
            peers = await self.orchestrator.destroy_all(reason="local-renegotiation")
            if peers:
                self._schedule_recreate(peers)

        # Sessions referencing the old tracks are gone; kept kinds stay open
        retired = _without(old_tracks, event.tracks)
        if retired:
            await self.capture.release(retired)

    async def handle_composition_failed(self, event: CompositionFailed) -> None:
        """Report a failed capture; the composition was already rolled back."""
        self._pending.discard(event.kind)
        logger.warning(
            "Media change failed, composition rolled back",
            extra={"kind": event.kind.value, "enabled": event.enabled, "error": str(event.error)},
        )
        self.presentation.composition_failed(event.kind, event.enabled, event.error)

    async def _send_hint(self, kind: MediaKind, enabled: bool) -> None:
        assert self.room_id is not None
        try:
            await self.signaling.send(
                StreamUpdateMessage(room_id=self.room_id, stream_type=kind, enabled=enabled)
            )
        except SignalingError as e:
            logger.warning("Failed to send stream update", extra={"error": str(e)})

    def _schedule_recreate(self, peers: list[tuple[str, str]]) -> None:
        loop = asyncio.get_running_loop()

        def fire() -> None:
            self._timers.discard(handle)
            self._post(RecreateSessions(tuple(peers)))

        handle = loop.call_later(self.settling_delay_s, fire)
        self._timers.add(handle)

    async def recreate_sessions(self, event: RecreateSessions) -> None:
        """Re-initiate to every captured peer still in the room without a session."""
        if self.room_id is None:
            return

        for peer_id, display_name in event.peers:
            if peer_id not in self.orchestrator.roster:
                logger.debug("Peer left before recreation", extra={"peer_id": peer_id})
                continue
            if self.orchestrator.ledger.get(peer_id) is not None:
                # The peer re-initiated first
                continue
            name = self.orchestrator.roster.get(peer_id) or display_name
            await self.orchestrator.create_session(peer_id, name, Role.INITIATOR)

    async def handle_remote_stream_update(self, message: StreamUpdateNotification) -> None:
        """Tear down a peer's session ahead of its fresh offer."""
        peer_id = message.from_user_id
        self.presentation.peer_media_hint(peer_id, message.stream_type, message.enabled)

        session = self.orchestrator.ledger.get(peer_id)
        if session is None:
            return
        if session.role is Role.INITIATOR and session.state is SessionState.NEGOTIATING:
            # Our offer is in flight; the glare rule settles it
            return
        await self.orchestrator.destroy_session(peer_id, reason="remote-renegotiation")

    def cancel_timers(self) -> None:
        """Cancel scheduled session recreations."""
        for handle in list(self._timers):
            handle.cancel()
        self._timers.clear()

    async def release_capture(self) -> None:
        """Release the current tracks, keeping the composition."""
        tracks = self.local_media.tracks
        self.local_media.tracks = ()
        if tracks:
            await self.capture.release(tracks)

    async def cancel_captures(self) -> None:
        """Cancel in-flight captures; their results are dropped if already posted."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._pending.clear()
        self.desired = self.local_media.composition

    async def close(self) -> None:
        """Cancel in-flight captures and timers and release capture."""
        self.cancel_timers()
        await self.cancel_captures()
        await self.release_capture()

    def reset_composition(self, composition: MediaComposition) -> None:
        """Replace the desired composition (initial capture fallback)."""
        self.desired = composition


def _without(tracks: Sequence[MediaTrack], keep: Sequence[MediaTrack]) -> list[MediaTrack]:
    """Tracks not present (by identity) in ``keep``."""
    kept = {id(track) for track in keep}
    return [track for track in tracks if id(track) not in kept]
