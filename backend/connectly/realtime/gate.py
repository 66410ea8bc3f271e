"""Connection handshake: authenticate, admit, and tear down.

A connection is either fully admitted (registered, in its personal room,
counted as present) before any command is processed, or it is closed without
ever touching a room.
"""
import logging
from typing import Mapping, Optional

from connectly.auth.service import TokenVerifier, Unauthorized, parse_bearer

from .broadcaster import EventBroadcaster
from .connection import Connection
from .presence import PRESENCE_EVENT, PresenceRegistry
from .rooms import RoomManager

logger = logging.getLogger(__name__)


def personal_room(user_id: str) -> str:
    """Room id used for direct-to-user notifications."""
    return user_id


def token_from_handshake(
    query_params: Mapping[str, str], headers: Mapping[str, str]
) -> Optional[str]:
    """Pull the credential from connection metadata (query first, then header)."""
    token = query_params.get("token")
    if token:
        return token
    return parse_bearer(headers.get("authorization"))


class ConnectionGate:
    """Authenticates connection attempts and owns admission and teardown."""

    def __init__(
        self,
        verifier: TokenVerifier,
        rooms: RoomManager,
        presence: PresenceRegistry,
        broadcaster: EventBroadcaster,
    ) -> None:
        self._verifier = verifier
        self._rooms = rooms
        self._presence = presence
        self._broadcaster = broadcaster

    def authenticate(self, token: Optional[str]) -> str:
        """Return the verified user id for ``token``.

        Raises:
            Unauthorized: missing or invalid credential.
        """
        try:
            return self._verifier.verify(token)
        except Unauthorized as e:
            logger.warning("[Gate] Handshake rejected: %s", e.message)
            raise

    async def admit(self, connection: Connection) -> None:
        """Register an authenticated connection and mark its user present.

        Order: rooms first, then presence, so the presence broadcast that
        follows already reaches the new connection.
        """
        self._rooms.register(connection)
        self._rooms.join(connection, personal_room(connection.user_id))
        connection.admitted = True

        came_online = await self._presence.connect(connection.user_id)
        if not came_online:
            # Nothing was broadcast; the new socket still needs the snapshot
            await self._broadcaster.send(
                connection, PRESENCE_EVENT, await self._presence.list_online()
            )
        logger.info("[Gate] Admitted %s", connection)

    async def release(self, connection: Connection) -> None:
        """Tear a connection down: leave every room, then decrement presence.

        Idempotent; only the first call after admission has an effect.
        """
        if not connection.admitted:
            return
        connection.admitted = False
        rooms = self._rooms.remove(connection)
        logger.info("[Gate] Released %s (rooms=%d)", connection, len(rooms))
        await self._presence.disconnect(connection.user_id)
