"""Client end of the signaling channel.

``SignalingChannel`` is what the mesh client needs from the relay
connection; ``WebSocketSignalingClient`` implements it over ``websockets``.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

import websockets
from pydantic import ValidationError
from websockets.protocol import State

from src.mesh.errors import SignalingError
from src.signaling.protocol import ClientMessage, ServerMessage, parse_server_message

logger = logging.getLogger(__name__)


class SignalingChannel(ABC):
    """One reliable, ordered, bidirectional channel to the relay."""

    @abstractmethod
    async def connect(self) -> None:
        """Open the channel.

        Raises:
            SignalingError: If the relay cannot be reached
        """

    @abstractmethod
    async def send(self, message: ClientMessage) -> None:
        """Send one frame.

        Raises:
            SignalingError: If the channel is closed or broken
        """

    @abstractmethod
    def messages(self) -> AsyncIterator[ServerMessage]:
        """Iterate over inbound frames until the channel closes."""

    @abstractmethod
    async def close(self) -> None:
        """Close the channel. Safe to call more than once."""

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Check if the channel is open."""


class WebSocketSignalingClient(SignalingChannel):
    """Signaling channel over a WebSocket connection."""

    def __init__(self, server_url: str, max_message_bytes: int = 2**20) -> None:
        """Initialize signaling client.

        Args:
            server_url: Relay WebSocket URL (e.g., ws://localhost:8080)
            max_message_bytes: Maximum size of one inbound frame
        """
        self.server_url = server_url
        self._max_message_bytes = max_message_bytes
        self._websocket: Any = None  # websockets ClientConnection

    @property
    def is_connected(self) -> bool:
        return self._websocket is not None and self._websocket.state == State.OPEN

    async def connect(self) -> None:
        if self.is_connected:
            return

        try:
            self._websocket = await websockets.connect(
                self.server_url, max_size=self._max_message_bytes
            )
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise SignalingError(f"Cannot reach relay at {self.server_url}: {e}") from e

        logger.info("Connected to signal relay", extra={"url": self.server_url})

    async def send(self, message: ClientMessage) -> None:
        if not self.is_connected:
            raise SignalingError("Signaling connection is closed")

        try:
            await self._websocket.send(message.to_json())
        except websockets.exceptions.ConnectionClosed as e:
            raise SignalingError(f"Signaling connection closed: {e}") from e

        logger.debug("Signaling frame sent", extra={"event": message.event})

    async def messages(self) -> AsyncIterator[ServerMessage]:
        if self._websocket is None:
            raise SignalingError("Signaling connection was never opened")

        try:
            async for raw_message in self._websocket:
                try:
                    message = parse_server_message(raw_message)
                except ValidationError as e:
                    logger.warning("Ignoring invalid frame from relay", extra={"error": str(e)})
                    continue
                yield message
        except websockets.exceptions.ConnectionClosed as e:
            logger.info("Signal relay closed the connection", extra={"reason": str(e)})

    async def close(self) -> None:
        if self._websocket is None:
            return

        try:
            await self._websocket.close()
        finally:
            logger.info("Signaling connection closed", extra={"url": self.server_url})
