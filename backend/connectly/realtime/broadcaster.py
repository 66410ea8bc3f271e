"""Fire-and-forget event fan-out to rooms.

Delivery is to the connections subscribed at the moment of the call; there is
no backlog or replay. A failed send is logged and the connection is dropped
from the room it failed in; the caller never sees the failure. Full teardown
is left to the socket endpoint, which releases the connection on disconnect.

Broadcasting uses asyncio.gather() so one slow socket does not serialise the
rest of the room.
"""
import asyncio
import logging
from typing import Any, Iterable, List, Optional

from .connection import Connection
from .rooms import RoomManager

logger = logging.getLogger(__name__)


class EventBroadcaster:
    """Delivers named events to the connections selected by a RoomManager."""

    def __init__(self, rooms: RoomManager) -> None:
        self._rooms = rooms

    async def emit(
        self,
        room_id: str,
        event: str,
        payload: Any,
        exclude: Optional[Connection] = None,
    ) -> int:
        """Send ``event`` to every connection in ``room_id``.

        Args:
            room_id: Room to broadcast to.
            event: Event name.
            payload: JSON-serializable payload.
            exclude: Connection to skip (typing indicators skip the sender).

        Returns:
            Number of connections the event was delivered to.
        """
        connections = [c for c in self._rooms.members(room_id) if c is not exclude]
        return await self._deliver(connections, event, payload, room_id)

    async def emit_all(self, event: str, payload: Any) -> int:
        """Send ``event`` to every registered connection."""
        return await self._deliver(self._rooms.connections(), event, payload)

    async def send(self, connection: Connection, event: str, payload: Any) -> bool:
        """Send ``event`` to a single connection."""
        return await self._deliver([connection], event, payload) == 1

    async def _deliver(
        self,
        connections: List[Connection],
        event: str,
        payload: Any,
        room_id: Optional[str] = None,
    ) -> int:
        if not connections:
            return 0

        results = await asyncio.gather(
            *[self._safe_send(conn, event, payload) for conn in connections],
            return_exceptions=True,
        )

        failed = [
            conn for conn, success in zip(connections, results)
            if success is not True
        ]
        if room_id is not None:
            self._cleanup_connections(room_id, failed)
        return len(connections) - len(failed)

    async def _safe_send(self, connection: Connection, event: str, payload: Any) -> bool:
        """Send one frame, reporting failure instead of raising.

        Returns:
            True if successful, False if the connection failed.
        """
        try:
            await connection.send_event(event, payload)
            return True
        except Exception as e:
            logger.debug(f"Failed to send {event} to {connection}: {e}")
            return False

    def _cleanup_connections(
        self, room_id: str, failed_connections: Iterable[Connection]
    ) -> None:
        """Remove failed connections from the room they failed in."""
        for conn in failed_connections:
            if self._rooms.leave(conn, room_id):
                logger.debug(f"Removed dead connection {conn} from room {room_id}")
