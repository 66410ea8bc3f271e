"""Online presence derived from open connections.

A user is online while they hold at least one admitted connection. Counting
connections (rather than flagging users) keeps a second tab from flapping the
user offline when the first one closes.

The counter lives behind ``PresenceBackend`` so a shared store can replace
the in-process dict for multi-instance deployments without touching callers.
"""
import logging
import threading
from typing import Dict, List, Optional, Protocol

from .broadcaster import EventBroadcaster

logger = logging.getLogger(__name__)

PRESENCE_EVENT = "presence:list"


class PresenceBackend(Protocol):
    async def increment(self, user_id: str) -> int:
        """Add one connection for ``user_id``; return the new count."""
        ...

    async def decrement(self, user_id: str) -> int:
        """Remove one connection for ``user_id``; return the new count (>= 0)."""
        ...

    async def online_ids(self) -> List[str]:
        ...


class InMemoryPresenceBackend:
    """Process-local counters guarded by a mutex."""

    def __init__(self) -> None:
        self._counts: Dict[str, int] = {}
        self._lock = threading.Lock()

    async def increment(self, user_id: str) -> int:
        with self._lock:
            count = self._counts.get(user_id, 0) + 1
            self._counts[user_id] = count
            return count

    async def decrement(self, user_id: str) -> int:
        with self._lock:
            count = self._counts.get(user_id, 0) - 1
            if count <= 0:
                self._counts.pop(user_id, None)
                return 0
            self._counts[user_id] = count
            return count

    async def online_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._counts)


class PresenceRegistry:
    """Tracks online users and announces every online/offline transition.

    The announcement is the full online list, not a delta.
    """

    def __init__(
        self,
        broadcaster: EventBroadcaster,
        backend: Optional[PresenceBackend] = None,
    ) -> None:
        self._broadcaster = broadcaster
        self._backend = backend or InMemoryPresenceBackend()

    async def connect(self, user_id: str) -> bool:
        """Count a new connection. Returns True if the user just came online."""
        count = await self._backend.increment(user_id)
        if count != 1:
            return False
        logger.info("[Presence] %s is online", user_id)
        await self.announce()
        return True

    async def disconnect(self, user_id: str) -> bool:
        """Count a closed connection. Returns True if the user just went offline."""
        count = await self._backend.decrement(user_id)
        if count != 0:
            return False
        logger.info("[Presence] %s is offline", user_id)
        await self.announce()
        return True

    async def list_online(self) -> List[str]:
        return await self._backend.online_ids()

    async def is_online(self, user_id: str) -> bool:
        return user_id in await self._backend.online_ids()

    async def announce(self) -> None:
        """Broadcast the current online list to every connection."""
        await self._broadcaster.emit_all(PRESENCE_EVENT, await self.list_online())
