"""Capture provider backed by aiortc's MediaPlayer (FFmpeg devices).

Each enabled media kind is opened from its configured source (e.g. ``pulse``
for the microphone, ``v4l2`` for the camera, ``x11grab`` for the screen).
Opening a device blocks, so it runs in a worker thread.

Devices such as v4l2 cameras can only be opened once, so a kind stays open
across composition changes until its track is released.
"""

import asyncio
import logging
from collections.abc import Sequence

from aiortc.contrib.media import MediaPlayer

from src.common.types import MediaKind
from src.mesh.config import CaptureConfig, CaptureSourceConfig
from src.mesh.errors import CaptureError
from src.mesh.media import CaptureProvider, MediaComposition, MediaTrack

logger = logging.getLogger(__name__)


class MediaPlayerCapture(CaptureProvider):
    """Opens one MediaPlayer per enabled media kind and keeps it open."""

    def __init__(self, config: CaptureConfig) -> None:
        self.config = config
        self._held: dict[MediaKind, MediaTrack] = {}

    @property
    def held_kinds(self) -> list[MediaKind]:
        """Media kinds with an open device."""
        return list(self._held)

    async def acquire(self, composition: MediaComposition) -> Sequence[MediaTrack]:
        tracks: list[MediaTrack] = []
        opened: list[MediaTrack] = []
        try:
            for kind in composition.enabled_kinds:
                track = self._held.get(kind)
                if track is None or track.readyState == "ended":
                    track = await self._open(kind)
                    opened.append(track)
                tracks.append(track)
        except (CaptureError, asyncio.CancelledError):
            await self.release(opened)
            raise
        return tracks

    async def _open(self, kind: MediaKind) -> MediaTrack:
        source = self.config.source_for(kind)
        if source is None:
            raise CaptureError(f"No capture source configured for {kind.value}")

        opening = asyncio.ensure_future(asyncio.to_thread(self._create_player, source))
        try:
            player = await asyncio.shield(opening)
        except asyncio.CancelledError:
            opening.add_done_callback(_stop_abandoned_player)
            raise
        except Exception as e:
            raise CaptureError(f"Cannot open {kind.value} source {source.file}: {e}") from e

        track = player.audio if kind is MediaKind.MICROPHONE else player.video
        if track is None:
            _stop_player(player)
            raise CaptureError(f"Source {source.file} has no {kind.value} stream")

        self._held[kind] = track
        logger.info(
            "Capture opened",
            extra={"kind": kind.value, "source": source.file, "format": source.format},
        )
        return track

    @staticmethod
    def _create_player(source: CaptureSourceConfig) -> MediaPlayer:
        return MediaPlayer(source.file, format=source.format, options=source.options or None)

    async def release(self, tracks: Sequence[MediaTrack]) -> None:
        for track in tracks:
            track.stop()
            for kind, held in list(self._held.items()):
                if held is track:
                    del self._held[kind]
        if tracks:
            logger.info("Capture released", extra={"tracks": len(tracks)})


def _stop_player(player: MediaPlayer) -> None:
    for track in (player.audio, player.video):
        if track is not None:
            track.stop()


def _stop_abandoned_player(opening: "asyncio.Future[MediaPlayer]") -> None:
    # Device opened after the capture was cancelled
    if opening.cancelled() or opening.exception() is not None:
        return
    _stop_player(opening.result())
