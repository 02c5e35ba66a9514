"""Integration tests for mesh formation and renegotiation.

Several mesh clients run against one in-process relay (real room registry
and dispatch, no sockets) with instantly negotiating fake transports.
"""

import asyncio

import pytest

from src.common.types import MediaKind, Role
from src.mesh.errors import NotJoinedError
from src.mesh.ledger import SessionState
from tests.helpers.mesh_fakes import FakeCapture, FakeTransportFactory, InMemoryChannel, wait_until
from tests.integration.conftest import SETTLING_DELAY_MS, MeshRoom, fully_connected

ROOM = "0123456789abcdef0123456789abcdef"
SETTLE_S = SETTLING_DELAY_MS / 1000 * 5


@pytest.mark.asyncio
async def test_three_participants_form_full_mesh(mesh_room: MeshRoom) -> None:
    """Test later joiners initiate to everyone already present."""
    a = await mesh_room.add("Ada")
    await a.client.join(ROOM)
    b = await mesh_room.add("Bob")
    await b.client.join(ROOM)
    c = await mesh_room.add("Cy")
    await c.client.join(ROOM)

    await wait_until(lambda: fully_connected(a, b, c))

    def role(owner, peer):  # type: ignore[no-untyped-def]
        session = owner.session_with(peer)
        assert session is not None
        return session.role

    assert role(b, a) is Role.INITIATOR
    assert role(a, b) is Role.RECEIVER
    assert role(c, a) is Role.INITIATOR
    assert role(c, b) is Role.INITIATOR
    assert role(a, c) is Role.RECEIVER
    assert role(b, c) is Role.RECEIVER

    # Three peer relationships, one session on each side
    assert sum(len(p.client.ledger) for p in (a, b, c)) == 6

    tile = a.presentation.tiles[c.id]
    assert tile.display_name == "Cy"
    assert tile.connected
    assert tile.has_audio
    assert not tile.has_video


@pytest.mark.asyncio
async def test_camera_toggle_renegotiates(mesh_room: MeshRoom) -> None:
    """Test turning the camera on recreates the session with A as initiator."""
    a = await mesh_room.add("Ada")
    await a.client.join(ROOM)
    b = await mesh_room.add("Bob")
    await b.client.join(ROOM)
    await wait_until(lambda: fully_connected(a, b))
    a_created, b_created = len(a.factory.created), len(b.factory.created)
    [mic] = a.client.local_media.tracks

    task = a.client.toggle(MediaKind.CAMERA)
    assert task is not None

    def b_sees_camera() -> bool:
        tile = b.presentation.tiles.get(a.id)
        return tile is not None and tile.has_video and fully_connected(a, b)

    await wait_until(b_sees_camera)

    a_session, b_session = a.session_with(b), b.session_with(a)
    assert a_session is not None and b_session is not None
    assert a_session.role is Role.INITIATOR
    assert b_session.role is Role.RECEIVER
    assert a_session.state is SessionState.CONNECTED
    assert b_session.state is SessionState.CONNECTED
    assert [t.kind for t in a_session.outgoing_tracks] == ["audio", "video"]

    # Exactly one recreation on each side
    assert len(a.factory.created) == a_created + 1
    assert len(b.factory.created) == b_created + 1
    assert b.presentation.tiles[a.id].display_name == "Ada"
    assert b.presentation.called("peer_media_hint") == [(a.id, MediaKind.CAMERA, True)]
    assert a.client.composition.camera is True
    assert a.client.local_media.tracks[0] is mic
    assert not mic.stopped


@pytest.mark.asyncio
async def test_simultaneous_toggles_converge(mesh_room: MeshRoom) -> None:
    """Test both sides renegotiating at once end with one connected session each."""
    a = await mesh_room.add("Ada")
    await a.client.join(ROOM)
    b = await mesh_room.add("Bob")
    await b.client.join(ROOM)
    await wait_until(lambda: fully_connected(a, b))

    a.client.toggle(MediaKind.CAMERA)
    b.client.toggle(MediaKind.CAMERA)

    def both_see_video() -> bool:
        tile_a = a.presentation.tiles.get(b.id)
        tile_b = b.presentation.tiles.get(a.id)
        return (
            fully_connected(a, b)
            and tile_a is not None
            and tile_a.has_video
            and tile_b is not None
            and tile_b.has_video
        )

    await wait_until(both_see_video)

    # Stays converged once late timers and stale signals have drained
    await asyncio.sleep(SETTLE_S)
    await a.client.wait_idle()
    await b.client.wait_idle()
    assert fully_connected(a, b)

    a_session, b_session = a.session_with(b), b.session_with(a)
    assert a_session is not None and b_session is not None
    assert {a_session.role, b_session.role} == {Role.INITIATOR, Role.RECEIVER}


@pytest.mark.asyncio
async def test_leave_mid_negotiation(mesh_room: MeshRoom) -> None:
    """Test leaving while a peer is still negotiating tears both sides down."""
    a = await mesh_room.add("Ada", factory=FakeTransportFactory(answer=False))
    await a.client.join(ROOM)
    b = await mesh_room.add("Bob")
    await b.client.join(ROOM)

    await wait_until(lambda: a.client.ledger.get(b.id) is not None and b.client.ledger.get(a.id) is not None)
    b_session = b.session_with(a)
    assert b_session is not None
    assert b_session.state is SessionState.NEGOTIATING

    await a.client.leave()

    assert len(a.client.ledger) == 0
    assert a.client.room_id is None
    assert a.presentation.ended_reason == "left"
    assert a.capture.released
    assert all(t.close_count == 1 for t in a.factory.created)

    await wait_until(lambda: len(b.client.ledger) == 0)
    assert b_session.state is SessionState.DESTROYED
    assert all(t.close_count == 1 for t in b.factory.created)
    assert a.id not in b.presentation.tiles

    with pytest.raises(NotJoinedError):
        await a.client.leave()


@pytest.mark.asyncio
async def test_connection_loss_returns_to_lobby(mesh_room: MeshRoom) -> None:
    """Test losing the relay destroys every session and ends the meeting."""
    a = await mesh_room.add("Ada")
    await a.client.join(ROOM)
    b = await mesh_room.add("Bob")
    await b.client.join(ROOM)
    await wait_until(lambda: fully_connected(a, b))

    assert isinstance(b.channel, InMemoryChannel)
    await b.channel.drop()

    await wait_until(lambda: b.presentation.ended_reason == "connection-lost")
    assert len(b.client.ledger) == 0
    assert b.client.room_id is None
    assert b.client.local_media.tracks == ()
    assert b.capture.held == {}

    await wait_until(lambda: len(a.client.ledger) == 0)
    assert a.presentation.ended_reason is None


@pytest.mark.asyncio
async def test_capture_failure_at_start_joins_without_media(mesh_room: MeshRoom) -> None:
    """Test a participant without devices still joins and receives."""
    capture = FakeCapture()
    capture.unavailable.add(MediaKind.MICROPHONE)
    a = await mesh_room.add("Ada")
    await a.client.join(ROOM)
    b = await mesh_room.add("Bob", capture=capture)
    await b.client.join(ROOM)

    await wait_until(lambda: fully_connected(a, b))

    assert b.client.composition.enabled_kinds == []
    assert not a.presentation.tiles[b.id].has_audio
    assert b.presentation.tiles[a.id].has_audio


@pytest.mark.asyncio
async def test_failed_toggle_keeps_sessions(mesh_room: MeshRoom) -> None:
    """Test a capture failure leaves the mesh untouched."""
    capture = FakeCapture()
    a = await mesh_room.add("Ada", capture=capture)
    await a.client.join(ROOM)
    b = await mesh_room.add("Bob")
    await b.client.join(ROOM)
    await wait_until(lambda: fully_connected(a, b))
    session = a.session_with(b)

    capture.unavailable.add(MediaKind.CAMERA)
    task = a.client.toggle(MediaKind.CAMERA)
    assert task is not None
    await task
    await a.client.wait_idle()

    assert a.session_with(b) is session
    assert a.client.composition.camera is False
    assert len(a.presentation.called("composition_failed")) == 1
    assert b.presentation.called("peer_media_hint") == []


@pytest.mark.asyncio
async def test_leave_cancels_capture_in_flight(mesh_room: MeshRoom) -> None:
    """Test a capture still running at leave never installs tracks."""
    a = await mesh_room.add("Ada")
    await a.client.join(ROOM)
    b = await mesh_room.add("Bob")
    await b.client.join(ROOM)
    await wait_until(lambda: fully_connected(a, b))

    a.capture.gate = asyncio.Event()
    task = a.client.toggle(MediaKind.CAMERA)
    assert task is not None

    await a.client.leave()
    a.capture.gate.set()
    await a.client.wait_idle()

    assert task.cancelled()
    assert a.client.local_media.tracks == ()
    assert a.capture.held == {}
    assert a.client.composition.camera is False
