"""Exceptions raised by the mesh client."""


class MeshError(Exception):
    """Base class for mesh client errors."""


class SignalingError(MeshError):
    """The signaling connection is missing, closed or broken."""


class CaptureError(MeshError):
    """A capture device is unavailable or access was denied."""


class NotJoinedError(MeshError):
    """The operation requires the client to be in a room."""


class DuplicateSessionError(MeshError):
    """A live session already exists for this peer."""

    def __init__(self, peer_id: str) -> None:
        super().__init__(f"A live session already exists for peer {peer_id}")
        self.peer_id = peer_id
