"""Tests for rooms, fan-out, presence, typing relay and the connection gate."""
from unittest.mock import AsyncMock

import pytest

from connectly.auth.service import JWTVerifier, Unauthorized
from connectly.realtime.broadcaster import EventBroadcaster
from connectly.realtime.connection import Connection
from connectly.realtime.gate import ConnectionGate, personal_room, token_from_handshake
from connectly.realtime.presence import (
    PRESENCE_EVENT,
    InMemoryPresenceBackend,
    PresenceRegistry,
)
from connectly.realtime.rooms import RoomManager
from connectly.realtime.typing_coordinator import TYPING_EVENT

from conftest import JWT_SECRET, FakeSocket, make_token


@pytest.fixture
def rooms():
    return RoomManager()


@pytest.fixture
def broadcaster(rooms):
    return EventBroadcaster(rooms)


@pytest.fixture
def presence(broadcaster):
    return PresenceRegistry(broadcaster)


@pytest.fixture
def gate(rooms, presence, broadcaster):
    return ConnectionGate(JWTVerifier(JWT_SECRET), rooms, presence, broadcaster)


def _conn(user_id="u1", fail=False):
    return Connection(FakeSocket(fail=fail), user_id)


class TestRoomManager:
    """Tests for room membership."""

    def test_join_and_leave(self, rooms):
        conn = _conn()
        rooms.register(conn)

        assert rooms.join(conn, "chat-1")
        assert rooms.members("chat-1") == [conn]
        assert rooms.get_room_size("chat-1") == 1

        assert rooms.leave(conn, "chat-1")
        assert rooms.members("chat-1") == []
        assert rooms.rooms_of(conn) == set()

    def test_invalid_room_ids_are_noops(self, rooms):
        """Blank or non-string ids are ignored without error."""
        conn = _conn()
        rooms.register(conn)
        for bad in (None, "", "   ", 42, {"chatId": "x"}):
            assert rooms.join(conn, bad) is False
            assert rooms.leave(conn, bad) is False
        assert rooms.rooms_of(conn) == set()

    def test_join_requires_registration(self, rooms):
        assert rooms.join(_conn(), "chat-1") is False
        assert rooms.get_room_size("chat-1") == 0

    def test_leave_room_not_joined(self, rooms):
        conn = _conn()
        rooms.register(conn)
        assert rooms.leave(conn, "chat-1") is False

    def test_remove_drops_every_room(self, rooms):
        conn = _conn()
        other = _conn("u2")
        rooms.register(conn)
        rooms.register(other)
        rooms.join(conn, "b")
        rooms.join(conn, "a")
        rooms.join(other, "a")

        assert rooms.remove(conn) == ["a", "b"]
        assert rooms.members("a") == [other]
        assert rooms.members("b") == []
        assert rooms.remove(conn) == []
        assert rooms.connections() == [other]

    def test_two_connections_same_user(self, rooms):
        """Rooms hold connections, so one user can appear twice."""
        first, second = _conn("u1"), _conn("u1")
        for c in (first, second):
            rooms.register(c)
            rooms.join(c, "chat-1")
        assert rooms.get_room_size("chat-1") == 2


class TestEventBroadcaster:
    """Tests for fire-and-forget fan-out."""

    @pytest.mark.asyncio
    async def test_emit_to_room(self, rooms, broadcaster):
        inside, outside = _conn("u1"), _conn("u2")
        for c in (inside, outside):
            rooms.register(c)
        rooms.join(inside, "chat-1")

        delivered = await broadcaster.emit("chat-1", "ping", {"n": 1})

        assert delivered == 1
        assert inside.socket.frames == [{"event": "ping", "data": {"n": 1}}]
        assert outside.socket.frames == []

    @pytest.mark.asyncio
    async def test_emit_to_empty_room(self, broadcaster):
        assert await broadcaster.emit("nobody", "ping", {}) == 0

    @pytest.mark.asyncio
    async def test_exclude(self, rooms, broadcaster):
        sender, receiver = _conn("u1"), _conn("u2")
        for c in (sender, receiver):
            rooms.register(c)
            rooms.join(c, "chat-1")

        await broadcaster.emit("chat-1", "ping", {}, exclude=sender)

        assert sender.socket.frames == []
        assert len(receiver.socket.frames) == 1

    @pytest.mark.asyncio
    async def test_failed_send_drops_connection_from_that_room(self, rooms, broadcaster):
        """A failing socket leaves the room; the rest of the room still receives."""
        dead, alive = _conn("u1", fail=True), _conn("u2")
        for c in (dead, alive):
            rooms.register(c)
            rooms.join(c, "chat-1")
        rooms.join(dead, "u1")

        delivered = await broadcaster.emit("chat-1", "ping", {})

        assert delivered == 1
        assert rooms.members("chat-1") == [alive]
        assert rooms.rooms_of(dead) == {"u1"}
        assert dead in rooms.connections()

    @pytest.mark.asyncio
    async def test_connection_can_rejoin_after_failed_send(self, rooms, presence, gate, broadcaster):
        """One failed send does not unregister a connection that is still admitted."""
        conn = _conn("u1")
        await gate.admit(conn)
        rooms.join(conn, "chat-1")
        conn.socket.fail = True
        await broadcaster.emit("chat-1", "ping", {})
        conn.socket.fail = False

        assert rooms.join(conn, "chat-1")
        assert rooms.rooms_of(conn) == {"u1", "chat-1"}
        assert await presence.list_online() == ["u1"]

        await presence.connect("u2")
        assert conn.socket.events(PRESENCE_EVENT)[-1] == ["u1", "u2"]

    @pytest.mark.asyncio
    async def test_failed_direct_send_keeps_rooms(self, rooms, broadcaster):
        conn = _conn("u1", fail=True)
        rooms.register(conn)
        rooms.join(conn, "chat-1")

        assert await broadcaster.send(conn, "hello", 1) is False
        assert await broadcaster.emit_all("hello", 1) == 0
        assert rooms.rooms_of(conn) == {"chat-1"}

    @pytest.mark.asyncio
    async def test_emit_all(self, rooms, broadcaster):
        a, b = _conn("u1"), _conn("u2")
        rooms.register(a)
        rooms.register(b)
        assert await broadcaster.emit_all("hello", []) == 2

    @pytest.mark.asyncio
    async def test_send_single(self, broadcaster):
        assert await broadcaster.send(_conn(), "hello", 1) is True
        assert await broadcaster.send(_conn(fail=True), "hello", 1) is False


class TestPresenceRegistry:
    """Tests for connection-counted presence."""

    @pytest.mark.asyncio
    async def test_first_connection_announces(self, rooms, presence):
        watcher = _conn("watcher")
        rooms.register(watcher)

        assert await presence.connect("u1") is True
        assert watcher.socket.events(PRESENCE_EVENT) == [["u1"]]

    @pytest.mark.asyncio
    async def test_second_connection_is_silent(self, rooms, presence):
        watcher = _conn("watcher")
        rooms.register(watcher)
        await presence.connect("u1")

        assert await presence.connect("u1") is False
        assert len(watcher.socket.events(PRESENCE_EVENT)) == 1

    @pytest.mark.asyncio
    async def test_offline_only_after_last_connection(self, rooms, presence):
        """Closing one of two tabs keeps the user online."""
        watcher = _conn("watcher")
        rooms.register(watcher)
        await presence.connect("u1")
        await presence.connect("u1")

        assert await presence.disconnect("u1") is False
        assert await presence.is_online("u1")

        assert await presence.disconnect("u1") is True
        assert not await presence.is_online("u1")
        assert watcher.socket.events(PRESENCE_EVENT) == [["u1"], []]

    @pytest.mark.asyncio
    async def test_list_is_sorted(self, presence):
        await presence.connect("zed")
        await presence.connect("amy")
        assert await presence.list_online() == ["amy", "zed"]

    @pytest.mark.asyncio
    async def test_in_memory_backend_never_negative(self):
        backend = InMemoryPresenceBackend()
        assert await backend.decrement("ghost") == 0
        assert await backend.online_ids() == []

    @pytest.mark.asyncio
    async def test_custom_backend(self, broadcaster):
        """Counting is delegated to the injected backend."""
        backend = AsyncMock()
        backend.increment.return_value = 1
        backend.online_ids.return_value = ["u1"]
        registry = PresenceRegistry(broadcaster, backend)

        assert await registry.connect("u1") is True
        backend.increment.assert_awaited_once_with("u1")


class TestTypingCoordinator:
    """Tests for the typing relay."""

    @pytest.mark.asyncio
    async def test_relay_excludes_sender(self, engine, connect):
        sender = connect("u1", "chat-1")
        other = connect("u2", "chat-1")

        reached = await engine.typing.set_typing(sender, "chat-1", True)

        assert reached == 1
        assert sender.socket.frames == []
        assert other.socket.events(TYPING_EVENT) == [{"userId": "u1", "isTyping": True}]

    @pytest.mark.asyncio
    async def test_latest_signal_wins(self, engine, connect):
        sender = connect("u1", "chat-1")
        other = connect("u2", "chat-1")

        await engine.typing.set_typing(sender, "chat-1", True)
        await engine.typing.set_typing(sender, "chat-1", False)

        assert other.socket.events(TYPING_EVENT)[-1] == {"userId": "u1", "isTyping": False}

    @pytest.mark.asyncio
    async def test_invalid_chat_id(self, engine, connect):
        sender = connect("u1")
        assert await engine.typing.set_typing(sender, None, True) == 0
        assert await engine.typing.set_typing(sender, "  ", True) == 0


class TestConnectionGate:
    """Tests for handshake, admission and teardown."""

    def test_token_from_query_then_header(self):
        assert token_from_handshake({"token": "q"}, {"authorization": "Bearer h"}) == "q"
        assert token_from_handshake({}, {"authorization": "Bearer h"}) == "h"
        assert token_from_handshake({}, {}) is None

    def test_authenticate(self, gate):
        assert gate.authenticate(make_token("u1")) == "u1"
        with pytest.raises(Unauthorized):
            gate.authenticate("bad")
        with pytest.raises(Unauthorized):
            gate.authenticate(None)

    @pytest.mark.asyncio
    async def test_admit_joins_personal_room_and_announces(self, rooms, presence, gate):
        conn = _conn("u1")

        await gate.admit(conn)

        assert conn.admitted
        assert personal_room("u1") in rooms.rooms_of(conn)
        assert await presence.is_online("u1")
        assert conn.socket.events(PRESENCE_EVENT) == [["u1"]]

    @pytest.mark.asyncio
    async def test_second_tab_gets_snapshot(self, gate):
        """A connection that does not change presence still learns the online set."""
        first, second = _conn("u1"), _conn("u1")
        await gate.admit(first)
        await gate.admit(second)

        assert second.socket.events(PRESENCE_EVENT) == [["u1"]]
        assert first.socket.events(PRESENCE_EVENT) == [["u1"]]

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self, rooms, presence, gate):
        watcher = _conn("watcher")
        conn = _conn("u1")
        await gate.admit(watcher)
        await gate.admit(conn)

        await gate.release(conn)
        await gate.release(conn)

        assert conn not in rooms.connections()
        assert not await presence.is_online("u1")
        assert watcher.socket.events(PRESENCE_EVENT) == [["watcher"], ["u1", "watcher"], ["watcher"]]

    @pytest.mark.asyncio
    async def test_release_without_admit(self, presence, gate):
        await gate.release(_conn("u1"))
        assert await presence.list_online() == []
