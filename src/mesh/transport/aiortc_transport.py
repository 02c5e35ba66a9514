"""Peer transport sessions backed by aiortc.

Negotiation is non-trickle: aiortc finishes ICE gathering inside
``setLocalDescription``, so each side emits a single signal carrying the
complete SDP (``{"type": "offer"|"answer", "sdp": ...}``).

Outgoing tracks are fixed at creation. One capture track feeds every session,
so the factory hands each session its own ``MediaRelay`` subscription.

The initiator always offers one audio section and two video sections (camera
and screen), receive-only where it has nothing to send, so the receiver can
attach any composition to the offered sections when it answers.
"""

import logging
from collections import Counter
from collections.abc import Sequence

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.contrib.media import MediaRelay

from src.common.types import Role, SignalData
from src.mesh.config import PeerConnectionConfig
from src.mesh.media import MediaTrack
from src.mesh.transport.base import PeerTransport, PeerTransportFactory, SessionCallbacks

logger = logging.getLogger(__name__)

# Media sections in every offer: microphone; camera and screen
OFFERED_SECTIONS = {"audio": 1, "video": 2}


def build_rtc_configuration(config: PeerConnectionConfig) -> RTCConfiguration:
    """Translate ICE settings to aiortc's configuration object."""
    return RTCConfiguration(
        iceServers=[
            RTCIceServer(urls=server.urls, username=server.username, credential=server.credential)
            for server in config.ice_servers
        ]
    )


class AiortcPeerTransport(PeerTransport):
    """One RTCPeerConnection with one remote peer."""

    def __init__(
        self,
        role: Role,
        config: PeerConnectionConfig,
        local_tracks: Sequence[MediaTrack],
        callbacks: SessionCallbacks,
    ) -> None:
        self.role = role
        self.local_tracks = tuple(local_tracks)
        self.callbacks = callbacks
        self._pc = RTCPeerConnection(configuration=build_rtc_configuration(config))
        self._closed = False
        self._connected = False

        @self._pc.on("track")
        def on_track(track: MediaStreamTrack) -> None:
            logger.debug("Remote track received", extra={"kind": track.kind})
            self.callbacks.on_remote_media(track)

        @self._pc.on("connectionstatechange")
        async def on_connectionstatechange() -> None:
            state = self._pc.connectionState
            logger.debug("Peer connection state changed", extra={"state": state})
            if state == "connected" and not self._connected:
                self._connected = True
                self.callbacks.on_connected()
            elif state == "failed" and not self._closed:
                self.callbacks.on_error(ConnectionError("Peer connection failed"))

    @property
    def is_closed(self) -> bool:
        return self._closed

    def _add_local_tracks(self) -> None:
        for track in self.local_tracks:
            self._pc.addTrack(track)

    async def start(self) -> None:
        if self.role is Role.RECEIVER:
            return

        self._add_local_tracks()
        sending = Counter(track.kind for track in self.local_tracks)
        for kind, sections in OFFERED_SECTIONS.items():
            for _ in range(sections - sending[kind]):
                self._pc.addTransceiver(kind, direction="recvonly")

        offer = await self._pc.createOffer()
        await self._pc.setLocalDescription(offer)
        self._emit_local_description()

    async def signal(self, data: SignalData) -> None:
        if self._closed:
            raise RuntimeError("Transport session is closed")

        try:
            description = RTCSessionDescription(sdp=data["sdp"], type=data["type"])
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Malformed session description: {e}") from e

        if self.role is Role.INITIATOR:
            if description.type != "answer":
                raise ValueError(f"Initiator expects an answer, got {description.type}")
            await self._pc.setRemoteDescription(description)
            return

        if description.type != "offer":
            raise ValueError(f"Receiver expects an offer, got {description.type}")
        await self._pc.setRemoteDescription(description)
        self._check_offered_sections()
        self._add_local_tracks()
        answer = await self._pc.createAnswer()
        await self._pc.setLocalDescription(answer)
        self._emit_local_description()

    def _check_offered_sections(self) -> None:
        offered = Counter(transceiver.kind for transceiver in self._pc.getTransceivers())
        sending = Counter(track.kind for track in self.local_tracks)
        for kind, count in sending.items():
            if count > offered[kind]:
                raise ValueError(
                    f"Offer has {offered[kind]} {kind} section(s), cannot send {count} {kind} track(s)"
                )

    def _emit_local_description(self) -> None:
        description = self._pc.localDescription
        self.callbacks.on_local_signal({"type": description.type, "sdp": description.sdp})

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._pc.close()


class AiortcTransportFactory(PeerTransportFactory):
    """Creates aiortc-backed transport sessions."""

    def __init__(self) -> None:
        self._relay = MediaRelay()

    def create_session(
        self,
        role: Role,
        config: PeerConnectionConfig,
        local_tracks: Sequence[MediaTrack],
        callbacks: SessionCallbacks,
    ) -> PeerTransport:
        subscriptions = [self._relay.subscribe(track) for track in local_tracks]
        return AiortcPeerTransport(role, config, subscriptions, callbacks)


__all__ = ["AiortcPeerTransport", "AiortcTransportFactory", "build_rtc_configuration"]
