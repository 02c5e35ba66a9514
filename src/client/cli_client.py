"""Command-line mesh meeting client.

Creates or checks a meeting token over HTTP, joins the room through the
signal relay and keeps one aiortc peer connection per participant. Remote
media is consumed and discarded; the terminal shows who is in the meeting
and what they send.
"""

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from aiortc.contrib.media import MediaBlackhole

from src.client.meet_api import MeetingApiClient, MeetingApiError
from src.common.types import MediaKind
from src.mesh.capture import MediaPlayerCapture
from src.mesh.client import MeshClient
from src.mesh.config import ClientConfig
from src.mesh.errors import MeshError
from src.mesh.media import MediaComposition
from src.mesh.presentation import TileBoard
from src.mesh.signaling_client import WebSocketSignalingClient
from src.mesh.transport.aiortc_transport import AiortcTransportFactory

# Configure logging
logger = logging.getLogger(__name__)

COMMANDS = {
    "mic": MediaKind.MICROPHONE,
    "cam": MediaKind.CAMERA,
    "screen": MediaKind.SCREEN,
}

HELP_TEXT = """
Commands:
  /mic     - Toggle microphone
  /cam     - Toggle camera
  /screen  - Toggle screen sharing
  /peers   - List participants
  /leave   - Leave the meeting
  /quit    - Leave and exit
  /help    - Show this help
"""


class CLIPresentation(TileBoard):
    """Tile board that prints changes and drains remote media."""

    def __init__(self) -> None:
        super().__init__()
        self._sinks: dict[str, MediaBlackhole] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    def _spawn(self, coro: Any) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def peer_added(self, peer_id: str, display_name: str) -> None:
        super().peer_added(peer_id, display_name)
        print(f"\n+ {display_name} ({peer_id[:8]}) connecting...")

    def peer_media(self, peer_id: str, media: Sequence[Any]) -> None:
        tile = self.tiles.get(peer_id)
        known = list(tile.media) if tile is not None else []
        super().peer_media(peer_id, media)
        sink = self._sinks.setdefault(peer_id, MediaBlackhole())
        for track in media:
            if not any(track is seen for seen in known):
                sink.addTrack(track)
        self._spawn(sink.start())

    def peer_connected(self, peer_id: str) -> None:
        super().peer_connected(peer_id)
        tile = self.tiles.get(peer_id)
        if tile is not None:
            print(f"\n= {tile.display_name} connected")

    def peer_removed(self, peer_id: str) -> None:
        tile = self.tiles.get(peer_id)
        super().peer_removed(peer_id)
        sink = self._sinks.pop(peer_id, None)
        if sink is not None:
            self._spawn(sink.stop())
        if tile is not None:
            print(f"\n- {tile.display_name} disconnected")

    def peer_media_hint(self, peer_id: str, kind: MediaKind, enabled: bool) -> None:
        super().peer_media_hint(peer_id, kind, enabled)
        tile = self.tiles.get(peer_id)
        name = tile.display_name if tile is not None else peer_id[:8]
        print(f"\n~ {name} turned {kind.value} {'on' if enabled else 'off'}")

    def composition_changed(self, composition: MediaComposition) -> None:
        super().composition_changed(composition)
        enabled = ", ".join(kind.value for kind in composition.enabled_kinds) or "nothing"
        print(f"\nSending: {enabled}")

    def composition_failed(self, kind: MediaKind, enabled: bool, error: Exception) -> None:
        super().composition_failed(kind, enabled, error)
        print(f"\nCould not turn {kind.value} {'on' if enabled else 'off'}: {error}")

    def meeting_ended(self, reason: str) -> None:
        for sink in self._sinks.values():
            self._spawn(sink.stop())
        self._sinks.clear()
        super().meeting_ended(reason)
        print(f"\nMeeting ended ({reason})")

    def describe(self) -> str:
        """One line per participant."""
        if not self.tiles:
            return "No other participants"
        lines = []
        for tile in self.tiles.values():
            state = "connected" if tile.connected else "connecting"
            media = [name for name, on in (("audio", tile.has_audio), ("video", tile.has_video)) if on]
            lines.append(
                f"  {tile.display_name} ({tile.peer_id[:8]}) {state}, receiving {', '.join(media) or 'nothing'}"
            )
        return "\n".join(lines)


class CLIClient:
    """Interactive mesh meeting client."""

    def __init__(self, config: ClientConfig, verbose: bool = False) -> None:
        """Initialize CLI client.

        Args:
            config: Client configuration
            verbose: Enable verbose logging
        """
        self.config = config
        self.running = True
        self.presentation = CLIPresentation()
        self.api = MeetingApiClient(config.http_url)
        self.mesh = MeshClient(
            config=config,
            channel=WebSocketSignalingClient(config.server_url),
            transport_factory=AiortcTransportFactory(),
            capture=MediaPlayerCapture(config.capture),
            presentation=self.presentation,
        )

        # Setup logging
        level = logging.DEBUG if verbose else getattr(logging, config.log_level, logging.INFO)
        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(message)s",
            datefmt="%H:%M:%S",
        )

    async def resolve_meeting(self, room: str | None, create: bool) -> str:
        """Return the meeting token to join, creating one if asked.

        Raises:
            MeetingApiError: If the API fails or the token is unknown
        """
        if create:
            meet_id = await self.api.create_meeting()
            print(f"\nCreated meeting {meet_id}")
            return meet_id

        if room is None:
            raise MeetingApiError("Pass --room <meetId> or --create")

        if not await self.api.check_meeting(room):
            raise MeetingApiError(f"Meeting {room} does not exist")
        return room

    async def handle_command(self, command: str) -> None:
        """Run one slash command."""
        if command in COMMANDS:
            if self.mesh.toggle(COMMANDS[command]) is None:
                print(f"{command} change already in progress")

        elif command == "peers":
            print(self.presentation.describe())

        elif command in ("leave", "quit"):
            self.running = False

        elif command == "help":
            print(HELP_TEXT)

        else:
            print(f"Unknown command: {command}")
            print("Type /help for available commands")

    async def input_loop(self) -> None:
        """Handle user input from stdin."""
        print("\n" + "=" * 60)
        print(f"Meeting {self.mesh.room_id} as {self.config.display_name}")
        print("=" * 60)
        print(HELP_TEXT)

        loop = asyncio.get_running_loop()

        while self.running and self.mesh.room_id is not None:
            try:
                text = await loop.run_in_executor(None, input, "> ")
            except EOFError:
                # Handle Ctrl+D
                self.running = False
                break

            text = text.strip()
            if not text:
                continue
            if not text.startswith("/"):
                print("Commands start with /, type /help")
                continue

            await self.handle_command(text[1:].lower())

    async def run(self, room: str | None, create: bool) -> None:
        """Run the CLI client."""
        try:
            meet_id = await self.resolve_meeting(room, create)
            await self.mesh.start()
            await self.mesh.join(meet_id)
        except MeshError as e:
            logger.error(f"Cannot join meeting: {e}")
            await self.mesh.close()
            sys.exit(1)

        # Setup signal handlers
        def signal_handler() -> None:
            self.running = False

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler)

        try:
            await self.input_loop()
        finally:
            # Cleanup signal handlers
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)

            await self.mesh.close()
            print("\nGoodbye!")


def main() -> None:
    """Main entry point for CLI client."""
    parser = argparse.ArgumentParser(description="Full-mesh meeting CLI client")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to client config YAML file",
    )
    parser.add_argument("--server", type=str, default=None, help="Signal relay WebSocket URL")
    parser.add_argument("--http", type=str, default=None, help="Meeting API base URL")
    parser.add_argument("--room", type=str, default=None, help="Meeting token to join")
    parser.add_argument("--create", action="store_true", help="Create a new meeting and join it")
    parser.add_argument("--name", type=str, default=None, help="Display name")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    config = ClientConfig.from_yaml_with_defaults(args.config)
    overrides = {
        key: value
        for key, value in (
            ("server_url", args.server),
            ("http_url", args.http),
            ("display_name", args.name),
        )
        if value is not None
    }
    if overrides:
        config = ClientConfig.model_validate({**config.model_dump(), **overrides})

    client = CLIClient(config, verbose=args.verbose)

    try:
        asyncio.run(client.run(args.room, args.create))
    except KeyboardInterrupt:
        print("\nExiting...")
        sys.exit(0)


if __name__ == "__main__":
    main()
