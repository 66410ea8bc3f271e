"""Room membership for live connections.

A room id is either a chat id (joined explicitly with ``join_chat``) or a
user id (the personal room, joined automatically on admission). Rooms hold
connections, not users, so a user with several sockets has several entries.

Joining does not check chat membership. Events reach a chat room only
after a lifecycle operation has verified the acting user.
"""
import logging
import threading
from typing import Dict, List, Set

from .connection import Connection

logger = logging.getLogger(__name__)


def is_valid_room_id(room_id: object) -> bool:
    return isinstance(room_id, str) and bool(room_id.strip())


class RoomManager:
    """Maps room ids to subscribed connections.

    Every mutation is a short critical section under a mutex with no awaits
    inside, so callers on any event loop or thread see a consistent view.
    Readers get snapshots and deliver outside the lock.
    """

    def __init__(self) -> None:
        # room_id -> connections subscribed to it
        self._rooms: Dict[str, Set[Connection]] = {}
        # connection -> room ids it is subscribed to (for teardown)
        self._memberships: Dict[Connection, Set[str]] = {}
        self._lock = threading.Lock()

    def register(self, connection: Connection) -> None:
        """Track a newly admitted connection (no rooms yet)."""
        with self._lock:
            self._memberships.setdefault(connection, set())

    def join(self, connection: Connection, room_id: object) -> bool:
        """Subscribe ``connection`` to ``room_id``.

        Invalid ids and unregistered connections are a silent no-op.

        Returns:
            True if the connection is now subscribed.
        """
        if not is_valid_room_id(room_id):
            return False
        with self._lock:
            rooms = self._memberships.get(connection)
            if rooms is None:
                return False
            rooms.add(room_id)
            self._rooms.setdefault(room_id, set()).add(connection)
        logger.debug("[Rooms] %s joined %s", connection, room_id)
        return True

    def leave(self, connection: Connection, room_id: object) -> bool:
        """Unsubscribe ``connection`` from ``room_id`` (silent no-op if invalid)."""
        if not is_valid_room_id(room_id):
            return False
        with self._lock:
            rooms = self._memberships.get(connection)
            if rooms is None or room_id not in rooms:
                return False
            rooms.discard(room_id)
            self._discard(room_id, connection)
        logger.debug("[Rooms] %s left %s", connection, room_id)
        return True

    def remove(self, connection: Connection) -> List[str]:
        """Drop ``connection`` from every room and forget it.

        Safe to call more than once.

        Returns:
            The room ids it was removed from.
        """
        with self._lock:
            rooms = self._memberships.pop(connection, set())
            for room_id in rooms:
                self._discard(room_id, connection)
        return sorted(rooms)

    def members(self, room_id: str) -> List[Connection]:
        """Snapshot of the connections currently subscribed to ``room_id``."""
        with self._lock:
            return list(self._rooms.get(room_id, ()))

    def connections(self) -> List[Connection]:
        """Snapshot of every registered connection."""
        with self._lock:
            return list(self._memberships)

    def rooms_of(self, connection: Connection) -> Set[str]:
        with self._lock:
            return set(self._memberships.get(connection, ()))

    def get_room_size(self, room_id: str) -> int:
        """Get the number of connections subscribed to a room."""
        with self._lock:
            return len(self._rooms.get(room_id, ()))

    def _discard(self, room_id: str, connection: Connection) -> None:
        members = self._rooms.get(room_id)
        if members is None:
            return
        members.discard(connection)
        if not members:
            del self._rooms[room_id]
