"""Integration test fixtures and utilities.

Provides shared fixtures for:
- Mesh clients wired to an in-process relay (no sockets)
- A real WebSocket relay on a free port
- Convergence predicates over several clients' ledgers
"""

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

import pytest_asyncio

from src.mesh.client import MeshClient
from src.mesh.config import ClientConfig
from src.mesh.ledger import PeerSession, SessionState
from src.mesh.signaling_client import SignalingChannel
from src.signaling.server import SignalRelayServer
from tests.helpers.mesh_fakes import (
    FakeCapture,
    FakeTransportFactory,
    InMemoryChannel,
    RecordingPresentation,
    get_free_port,
)

logger = logging.getLogger(__name__)

SETTLING_DELAY_MS = 20


@dataclass
class MeshParticipant:
    """One mesh client and the fakes behind it."""

    name: str
    client: MeshClient
    channel: SignalingChannel
    factory: FakeTransportFactory
    capture: FakeCapture
    presentation: RecordingPresentation

    @property
    def id(self) -> str:
        local_id = self.client.local_id
        assert local_id is not None
        return local_id

    def session_with(self, peer: "MeshParticipant") -> PeerSession | None:
        """Live session with ``peer``, if any."""
        return self.client.ledger.get(peer.id)


class MeshRoom:
    """Mesh clients sharing one relay."""

    def __init__(self, relay: SignalRelayServer) -> None:
        self.relay = relay
        self.participants: list[MeshParticipant] = []

    async def add(
        self,
        name: str,
        factory: FakeTransportFactory | None = None,
        capture: FakeCapture | None = None,
        channel: SignalingChannel | None = None,
    ) -> MeshParticipant:
        """Start a mesh client (not yet joined)."""
        factory = factory or FakeTransportFactory()
        capture = capture or FakeCapture()
        channel = channel or InMemoryChannel(self.relay)
        presentation = RecordingPresentation()
        client = MeshClient(
            config=ClientConfig(display_name=name, settling_delay_ms=SETTLING_DELAY_MS),
            channel=channel,
            transport_factory=factory,
            capture=capture,
            presentation=presentation,
        )
        await client.start()

        participant = MeshParticipant(name, client, channel, factory, capture, presentation)
        self.participants.append(participant)
        return participant

    async def close(self) -> None:
        for participant in self.participants:
            await participant.client.close()


def fully_connected(*participants: MeshParticipant) -> bool:
    """Every pair has exactly one connected session on each side."""
    for a in participants:
        if len(a.client.ledger) != len(participants) - 1:
            return False
        for b in participants:
            if a is b:
                continue
            session = a.session_with(b)
            if session is None or session.state is not SessionState.CONNECTED:
                return False
    return True


@pytest_asyncio.fixture
async def mesh_room() -> AsyncIterator[MeshRoom]:
    """Mesh clients on an in-process relay."""
    room = MeshRoom(SignalRelayServer(port=0))
    yield room
    await room.close()


@pytest_asyncio.fixture
async def websocket_relay() -> AsyncIterator[SignalRelayServer]:
    """A running WebSocket relay on a free port."""
    relay = SignalRelayServer(host="127.0.0.1", port=get_free_port(), max_connections=8)
    await relay.start()
    logger.info("Test relay started", extra={"port": relay.port})
    yield relay
    await relay.stop()
