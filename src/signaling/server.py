"""Signal relay server with WebSocket signaling and HTTP meeting API.

Main server implementation that:
1. Accepts signaling WebSocket connections and assigns each an identity
2. Tracks room membership (join on request, leave on disconnect)
3. Relays opaque signals between two members of the same room
4. Broadcasts best-effort stream-update hints
5. Serves the meeting-token HTTP API and health endpoints

The relay holds no media and no negotiation logic.
"""

import argparse
import asyncio
import logging
import uuid
from pathlib import Path
from typing import Any

import websockets
from aiohttp.web import Application, AppRunner, TCPSite
from pydantic import ValidationError
from websockets.asyncio.server import ServerConnection

from src.signaling.config import SignalingConfig
from src.signaling.health import setup_health_routes
from src.signaling.http_api import setup_meeting_routes
from src.signaling.meetings import MeetingStore
from src.signaling.protocol import (
    ConnectedMessage,
    ErrorMessage,
    JoinRoomMessage,
    ReturnSignalMessage,
    SendSignalMessage,
    ServerMessage,
    SignalReceivedMessage,
    SignalReturnedMessage,
    StreamUpdateMessage,
    StreamUpdateNotification,
    parse_client_message,
)
from src.signaling.rooms import Participant, RoomRegistry

logger = logging.getLogger(__name__)

# Close code for "try again later" (RFC 6455 registry)
CLOSE_TRY_AGAIN_LATER = 1013


class ParticipantConnection:
    """Outbound side of one signaling connection.

    Frames are queued by ``deliver`` (never blocks) and written by a
    dedicated writer task in FIFO order.
    """

    def __init__(self, websocket: ServerConnection, identity: str) -> None:
        self.websocket = websocket
        self.identity = identity
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._closed = False

    def deliver(self, message: ServerMessage) -> None:
        """Queue a frame for this connection; dropped once closed."""
        if self._closed:
            return
        self._queue.put_nowait(message.to_json())

    def close(self) -> None:
        """Stop accepting frames and let the writer drain and exit."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    async def writer_loop(self) -> None:
        """Write queued frames until closed or the socket goes away."""
        while True:
            frame = await self._queue.get()
            if frame is None:
                break
            try:
                await self.websocket.send(frame)
            except websockets.exceptions.ConnectionClosed:
                logger.debug(
                    "Dropping frames for closed connection",
                    extra={"participant": self.identity},
                )
                break


class SignalRelayServer:
    """WebSocket signaling relay.

    Thread-safety: This class is NOT thread-safe. Use from a single event loop.
    """

    def __init__(
        self,
        host: str = "0.0.0.0",  # noqa: S104
        port: int = 8080,
        max_connections: int = 500,
        max_message_bytes: int = 2**20,
        registry: RoomRegistry | None = None,
    ) -> None:
        """Initialize relay server.

        Args:
            host: Bind host address
            port: Bind port
            max_connections: Maximum concurrent connections
            max_message_bytes: Maximum size of one inbound frame
            registry: Room registry (a fresh one by default)
        """
        self._host = host
        self._port = port
        self._max_connections = max_connections
        self._max_message_bytes = max_message_bytes
        self.registry = registry or RoomRegistry()
        self._server: Any = None  # websockets Server type
        self._running = False
        self._connections: dict[str, ParticipantConnection] = {}

        logger.info(
            "Signal relay initialized",
            extra={"host": host, "port": port, "max_connections": max_connections},
        )

    @property
    def is_running(self) -> bool:
        """Check if the relay is currently accepting connections."""
        return self._running

    @property
    def connection_count(self) -> int:
        """Number of open signaling connections."""
        return len(self._connections)

    @property
    def port(self) -> int:
        """Bound port (useful when started on port 0)."""
        if self._server is not None:
            for sock in self._server.sockets:
                return int(sock.getsockname()[1])
        return self._port

    async def start(self) -> None:
        """Start the WebSocket server.

        Raises:
            RuntimeError: If the relay is already running or fails to start
            OSError: If port binding fails
        """
        if self._running:
            raise RuntimeError("Signal relay is already running")

        logger.info("Starting signal relay", extra={"host": self._host, "port": self._port})

        try:
            self._server = await websockets.serve(
                self._handle_connection,
                self._host,
                self._port,
                max_size=self._max_message_bytes,
            )
            self._running = True
        except OSError as e:
            logger.error(
                "Failed to bind signal relay",
                extra={"host": self._host, "port": self._port, "error": str(e)},
            )
            raise
        except Exception as e:
            logger.error("Failed to start signal relay", extra={"error": str(e)})
            raise RuntimeError(f"Failed to start signal relay: {e}") from e

        logger.info("Signal relay started", extra={"host": self._host, "port": self.port})

    async def stop(self) -> None:
        """Stop the WebSocket server, closing every connection."""
        if not self._running:
            return

        logger.info("Stopping signal relay")
        self._running = False

        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        logger.info("Signal relay stopped")

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        """Serve one signaling connection until it closes.

        Args:
            websocket: WebSocket connection
        """
        if len(self._connections) >= self._max_connections:
            logger.warning(
                "Rejecting connection, relay is full",
                extra={"max_connections": self._max_connections},
            )
            await websocket.close(CLOSE_TRY_AGAIN_LATER, "relay is full")
            return

        identity = uuid.uuid4().hex
        connection = ParticipantConnection(websocket, identity)
        participant = Participant(identity=identity, deliver=connection.deliver)
        self._connections[identity] = connection
        writer = asyncio.create_task(connection.writer_loop())

        logger.info(
            "New signaling connection",
            extra={"participant": identity, "remote": websocket.remote_address},
        )

        connection.deliver(ConnectedMessage(id=identity))

        try:
            async for raw_message in websocket:
                await self.dispatch(participant, raw_message)
        except websockets.exceptions.ConnectionClosed:
            logger.info("Signaling connection dropped", extra={"participant": identity})
        finally:
            await self.registry.leave(participant)
            self._connections.pop(identity, None)
            connection.close()
            await writer
            logger.info("Signaling connection closed", extra={"participant": identity})

    async def dispatch(self, participant: Participant, raw_message: str | bytes) -> None:
        """Route one inbound frame.

        Invalid frames are answered with an ``error`` event and otherwise
        ignored; the connection stays open.
        """
        try:
            message = parse_client_message(raw_message)
        except ValidationError as e:
            logger.warning(
                "Invalid signaling frame",
                extra={"participant": participant.identity, "error": str(e)},
            )
            participant.deliver(ErrorMessage(message=f"Invalid message: {e}", code="INVALID_MESSAGE"))
            return

        if isinstance(message, JoinRoomMessage):
            await self.registry.join(participant, message.room_id, message.user_name)

        elif isinstance(message, SendSignalMessage):
            # callerID is always the sender's own identity, whatever the client claims
            await self.registry.relay(
                participant,
                message.user_to_signal,
                SignalReceivedMessage(signal=message.signal, caller_id=participant.identity),
            )

        elif isinstance(message, ReturnSignalMessage):
            await self.registry.relay(
                participant,
                message.caller_id,
                SignalReturnedMessage(signal=message.signal, id=participant.identity),
            )

        elif isinstance(message, StreamUpdateMessage):
            if message.room_id != participant.room_token:
                logger.debug(
                    "Stream update names a room the sender is not in",
                    extra={"participant": participant.identity, "room": message.room_id},
                )
                return
            await self.registry.broadcast(
                participant,
                StreamUpdateNotification(
                    from_user_id=participant.identity,
                    stream_type=message.stream_type,
                    enabled=message.enabled,
                ),
            )


def create_http_app(relay: SignalRelayServer, store: MeetingStore) -> Application:
    """Build the aiohttp application serving the meeting API and health checks."""
    app = Application()
    setup_meeting_routes(app, store)
    setup_health_routes(app, relay)
    return app


async def start_server(config_path: Path) -> None:
    """Run the relay and HTTP API until cancelled.

    Args:
        config_path: Path to relay config YAML file (defaults if missing)
    """
    config = SignalingConfig.from_yaml_with_defaults(config_path)

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info("Loaded configuration", extra={"config_path": str(config_path)})

    ws_config = config.websocket
    relay = SignalRelayServer(
        host=ws_config.host,
        port=ws_config.port,
        max_connections=ws_config.max_connections,
        max_message_bytes=ws_config.max_message_bytes,
    )
    await relay.start()

    runner: AppRunner | None = None
    if config.http.enabled:
        store = MeetingStore(config.meetings.meetings_file)
        runner = AppRunner(create_http_app(relay, store))
        await runner.setup()
        site = TCPSite(runner, config.http.host, config.http.port)
        await site.start()
        logger.info("HTTP API started", extra={"port": config.http.port})

    try:
        logger.info("Signal relay ready", extra={"port": ws_config.port})
        await asyncio.Future()  # run forever
    except asyncio.CancelledError:
        logger.info("Server loop cancelled")
    finally:
        logger.info("Shutting down signal relay")

        try:
            await asyncio.wait_for(relay.stop(), timeout=config.graceful_shutdown_timeout_s)
        except TimeoutError:
            logger.warning("Signal relay did not stop within the shutdown timeout")

        if runner is not None:
            await runner.cleanup()
            logger.info("HTTP API stopped")

        logger.info("Signal relay shut down")


def main() -> None:
    """Entry point for the signal relay server."""
    parser = argparse.ArgumentParser(description="Mesh meeting signal relay")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path(__file__).parent.parent.parent / "configs" / "signaling.yaml",
        help="Path to relay config YAML file",
    )
    args = parser.parse_args()

    try:
        asyncio.run(start_server(args.config))
    except KeyboardInterrupt:
        logger.info("Signal relay interrupted")


if __name__ == "__main__":
    main()
