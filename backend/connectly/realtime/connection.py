"""A live, authenticated client connection."""
import uuid
from typing import Any, Protocol


class EventSink(Protocol):
    async def send_json(self, data: Any) -> None:
        ...


class Connection:
    """Pairs a socket with the user id it authenticated as.

    Connections hash by identity: one user with two open sockets is two
    distinct connections.

    Attributes:
        id: Server-generated connection id (for logs).
        user_id: Verified identity from the handshake.
        admitted: True between ConnectionGate.admit and release.
    """

    def __init__(self, socket: EventSink, user_id: str) -> None:
        self.id = uuid.uuid4().hex[:12]
        self.socket = socket
        self.user_id = user_id
        self.admitted = False

    async def send_event(self, event: str, data: Any) -> None:
        """Write one ``{"event", "data"}`` frame to the socket."""
        await self.socket.send_json({"event": event, "data": data})

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r}, user_id={self.user_id!r})"
