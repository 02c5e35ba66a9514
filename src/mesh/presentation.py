"""Presentation sink interface and an in-memory tile board.

Rendering is not done here. The orchestrator reports tile-level changes to a
``PresentationSink``; ``TileBoard`` keeps one tile per peer and logs every
change, which is enough for the CLI client and for tests.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from src.common.types import MediaKind
from src.mesh.media import MediaComposition

logger = logging.getLogger(__name__)


class PresentationSink(ABC):
    """Receives tile-level updates from the mesh client."""

    @abstractmethod
    def peer_added(self, peer_id: str, display_name: str) -> None:
        """A session for a peer was created; show a placeholder tile."""

    @abstractmethod
    def peer_media(self, peer_id: str, media: Sequence[Any]) -> None:
        """Remote media for a peer arrived (the full list so far)."""

    @abstractmethod
    def peer_connected(self, peer_id: str) -> None:
        """Media is flowing with a peer."""

    @abstractmethod
    def peer_removed(self, peer_id: str) -> None:
        """A peer's session was destroyed; drop its tile."""

    @abstractmethod
    def peer_media_hint(self, peer_id: str, kind: MediaKind, enabled: bool) -> None:
        """A peer announced an outgoing media change."""

    @abstractmethod
    def composition_changed(self, composition: MediaComposition) -> None:
        """The local media composition changed."""

    @abstractmethod
    def composition_failed(self, kind: MediaKind, enabled: bool, error: Exception) -> None:
        """A local media change failed and was rolled back."""

    @abstractmethod
    def meeting_ended(self, reason: str) -> None:
        """The client left the room or lost the signaling connection."""


@dataclass
class PeerTile:
    """What is shown for one remote peer."""

    peer_id: str
    display_name: str
    media: list[Any] = field(default_factory=list)
    connected: bool = False
    hints: dict[MediaKind, bool] = field(default_factory=dict)

    @property
    def has_video(self) -> bool:
        """Check if any remote media is a video track."""
        return any(getattr(track, "kind", None) == "video" for track in self.media)

    @property
    def has_audio(self) -> bool:
        """Check if any remote media is an audio track."""
        return any(getattr(track, "kind", None) == "audio" for track in self.media)


class TileBoard(PresentationSink):
    """In-memory presentation state with one tile per peer."""

    def __init__(self) -> None:
        self.tiles: dict[str, PeerTile] = {}
        self.composition: MediaComposition | None = None
        self.ended_reason: str | None = None

    def peer_added(self, peer_id: str, display_name: str) -> None:
        self.tiles[peer_id] = PeerTile(peer_id=peer_id, display_name=display_name)
        logger.info("Tile added", extra={"peer_id": peer_id, "display_name": display_name})

    def peer_media(self, peer_id: str, media: Sequence[Any]) -> None:
        tile = self.tiles.get(peer_id)
        if tile is None:
            return
        tile.media = list(media)
        logger.info(
            "Tile media updated",
            extra={"peer_id": peer_id, "video": tile.has_video, "audio": tile.has_audio},
        )

    def peer_connected(self, peer_id: str) -> None:
        tile = self.tiles.get(peer_id)
        if tile is not None:
            tile.connected = True

    def peer_removed(self, peer_id: str) -> None:
        if self.tiles.pop(peer_id, None) is not None:
            logger.info("Tile removed", extra={"peer_id": peer_id})

    def peer_media_hint(self, peer_id: str, kind: MediaKind, enabled: bool) -> None:
        tile = self.tiles.get(peer_id)
        if tile is not None:
            tile.hints[kind] = enabled

    def composition_changed(self, composition: MediaComposition) -> None:
        self.composition = composition
        logger.info(
            "Local media changed",
            extra={"enabled": [kind.value for kind in composition.enabled_kinds]},
        )

    def composition_failed(self, kind: MediaKind, enabled: bool, error: Exception) -> None:
        logger.warning(
            "Local media change failed",
            extra={"kind": kind.value, "enabled": enabled, "error": str(error)},
        )

    def meeting_ended(self, reason: str) -> None:
        self.tiles.clear()
        self.ended_reason = reason
        logger.info("Meeting ended", extra={"reason": reason})
