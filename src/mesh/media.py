"""Local media composition and the capture provider interface.

The composition says which outgoing media are enabled; the capture provider
turns a composition into concrete tracks. Tracks are owned by the provider:
sessions reference them, and the provider releases them.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from typing import Any, TypeAlias

from src.common.types import MediaKind

MediaTrack: TypeAlias = Any
"""A capture handle (e.g. an aiortc ``MediaStreamTrack``). Never copied."""


@dataclass(frozen=True)
class MediaComposition:
    """Which outgoing media are enabled."""

    microphone: bool = True
    camera: bool = False
    screen_share: bool = False

    def is_enabled(self, kind: MediaKind) -> bool:
        """Check whether a media kind is enabled."""
        if kind is MediaKind.MICROPHONE:
            return self.microphone
        if kind is MediaKind.CAMERA:
            return self.camera
        return self.screen_share

    def with_kind(self, kind: MediaKind, enabled: bool) -> "MediaComposition":
        """Return a copy with one media kind switched."""
        if kind is MediaKind.MICROPHONE:
            return replace(self, microphone=enabled)
        if kind is MediaKind.CAMERA:
            return replace(self, camera=enabled)
        return replace(self, screen_share=enabled)

    @property
    def enabled_kinds(self) -> list[MediaKind]:
        """Enabled media kinds in a stable order."""
        return [kind for kind in MediaKind if self.is_enabled(kind)]


@dataclass
class LocalMedia:
    """The composition currently applied and the tracks captured for it.

    Sessions created now attach ``tracks``; a composition change replaces
    both fields together.
    """

    composition: MediaComposition = field(default_factory=MediaComposition)
    tracks: tuple[MediaTrack, ...] = ()


class CaptureProvider(ABC):
    """Acquires and releases capture tracks.

    ``acquire`` may take a human-scale amount of time (device or permission
    prompt); callers must not block event processing on it.

    A kind that is still held from an earlier ``acquire`` is returned as the
    same track rather than reopened, so callers release only the tracks that
    dropped out of the new result.
    """

    @abstractmethod
    async def acquire(self, composition: MediaComposition) -> Sequence[MediaTrack]:
        """Return one track per enabled kind in ``composition``.

        Kinds already held are reused; only newly enabled kinds are opened.
        Tracks opened by a failed or cancelled call are released before it
        returns.

        Raises:
            CaptureError: If a device is unavailable or access was denied
        """

    @abstractmethod
    async def release(self, tracks: Sequence[MediaTrack]) -> None:
        """Stop tracks previously returned by ``acquire``."""
