"""Unit tests for the MediaPlayer-backed capture provider.

MediaPlayer is patched so no FFmpeg device is opened.
"""

from collections.abc import Iterator
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from src.common.types import MediaKind
from src.mesh.capture import MediaPlayerCapture
from src.mesh.config import CaptureConfig, CaptureSourceConfig
from src.mesh.errors import CaptureError
from src.mesh.media import MediaComposition

MIC_AND_CAMERA = MediaComposition(microphone=True, camera=True)


class PlayerFactory:
    """Stand-in for the MediaPlayer class; remembers every player opened."""

    def __init__(self) -> None:
        self.players: list[MagicMock] = []
        self.failing: dict[str, Exception] = {}
        self.without_video: set[str] = set()

    def __call__(self, file: str, format: str | None = None, options: Any = None) -> MagicMock:
        if file in self.failing:
            raise self.failing[file]
        player = MagicMock()
        player.file = file
        player.audio = MagicMock(kind="audio", readyState="live")
        player.video = None if file in self.without_video else MagicMock(kind="video", readyState="live")
        self.players.append(player)
        return player


@pytest.fixture
def players() -> Iterator[PlayerFactory]:
    factory = PlayerFactory()
    with patch("src.mesh.capture.MediaPlayer", side_effect=factory):
        yield factory


@pytest.fixture
def capture() -> MediaPlayerCapture:
    return MediaPlayerCapture(
        CaptureConfig(
            microphone=CaptureSourceConfig(file="default", format="pulse"),
            camera=CaptureSourceConfig(file="/dev/video0", format="v4l2", options={"video_size": "640x480"}),
        )
    )


class TestMediaPlayerCapture:
    """Test suite for MediaPlayerCapture."""

    @pytest.mark.asyncio
    async def test_opens_each_enabled_kind(self, players: PlayerFactory, capture: MediaPlayerCapture) -> None:
        """Test one player per kind, microphone as audio and camera as video."""
        mic, camera = await capture.acquire(MIC_AND_CAMERA)

        assert [p.file for p in players.players] == ["default", "/dev/video0"]
        assert mic is players.players[0].audio
        assert camera is players.players[1].video
        assert capture.held_kinds == [MediaKind.MICROPHONE, MediaKind.CAMERA]

    @pytest.mark.asyncio
    async def test_held_kinds_are_not_reopened(self, players: PlayerFactory, capture: MediaPlayerCapture) -> None:
        """Test a second composition reuses the open camera instead of reopening it."""
        _, camera = await capture.acquire(MIC_AND_CAMERA)

        tracks = await capture.acquire(MediaComposition(microphone=False, camera=True))

        assert tracks == [camera]
        assert len(players.players) == 2

    @pytest.mark.asyncio
    async def test_ended_track_is_reopened(self, players: PlayerFactory, capture: MediaPlayerCapture) -> None:
        """Test a track that ended on its own is replaced."""
        _, camera = await capture.acquire(MIC_AND_CAMERA)
        camera.readyState = "ended"

        _, reopened = await capture.acquire(MIC_AND_CAMERA)

        assert reopened is not camera
        assert len(players.players) == 3

    @pytest.mark.asyncio
    async def test_partial_failure_releases_opened_tracks(
        self, players: PlayerFactory, capture: MediaPlayerCapture
    ) -> None:
        """Test the microphone is stopped when the camera cannot be opened."""
        players.failing["/dev/video0"] = OSError("Device or resource busy")

        with pytest.raises(CaptureError, match="camera"):
            await capture.acquire(MIC_AND_CAMERA)

        [mic_player] = players.players
        mic_player.audio.stop.assert_called_once()
        assert capture.held_kinds == []

    @pytest.mark.asyncio
    async def test_failure_keeps_previously_held_tracks(
        self, players: PlayerFactory, capture: MediaPlayerCapture
    ) -> None:
        """Test a failed change leaves tracks from earlier captures open."""
        [mic] = await capture.acquire(MediaComposition())

        with pytest.raises(CaptureError, match="screen"):
            await capture.acquire(MediaComposition(screen_share=True))

        mic.stop.assert_not_called()
        assert capture.held_kinds == [MediaKind.MICROPHONE]

    @pytest.mark.asyncio
    async def test_source_without_stream(self, players: PlayerFactory, capture: MediaPlayerCapture) -> None:
        """Test a source lacking the wanted stream is rejected and closed."""
        players.without_video.add("/dev/video0")

        with pytest.raises(CaptureError, match="no camera stream"):
            await capture.acquire(MediaComposition(microphone=False, camera=True))

        [player] = players.players
        player.audio.stop.assert_called_once()

    @pytest.mark.asyncio
    async def test_release(self, players: PlayerFactory, capture: MediaPlayerCapture) -> None:
        """Test released tracks are stopped and reopened on the next acquire."""
        mic, camera = await capture.acquire(MIC_AND_CAMERA)

        await capture.release([camera])

        camera.stop.assert_called_once()
        mic.stop.assert_not_called()
        assert capture.held_kinds == [MediaKind.MICROPHONE]

        await capture.acquire(MIC_AND_CAMERA)
        assert len(players.players) == 3
