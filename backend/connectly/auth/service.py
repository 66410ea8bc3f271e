"""Bearer token verification.

The same verifier guards the WebSocket handshake and every HTTP route, so a
connection and an HTTP request carrying the same token resolve to the same
user id.
"""
import logging
from typing import Optional, Protocol

import jwt
from jwt import InvalidTokenError

logger = logging.getLogger(__name__)


class Unauthorized(Exception):
    """Raised when a credential is missing or fails verification."""
    def __init__(self, message: str = "Unauthorized"):
        self.message = message
        super().__init__(message)


class TokenVerifier(Protocol):
    def verify(self, token: Optional[str]) -> str:
        """Return the user id carried by ``token`` or raise Unauthorized."""
        ...


class JWTVerifier:
    """Verifies signed JWTs and extracts the user id claim."""

    def __init__(
        self,
        secret_key: Optional[str],
        algorithm: str = "HS256",
        leeway_seconds: int = 5,
        user_id_claim: str = "userId",
    ):
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._leeway = leeway_seconds
        self._claim = user_id_claim

    def verify(self, token: Optional[str]) -> str:
        """Decode and validate ``token``.

        Raises:
            Unauthorized: token missing, signature/expiry invalid, secret not
                configured, or the user id claim absent or not a string.
        """
        if not token:
            raise Unauthorized("Missing token")
        if not self._secret_key:
            raise Unauthorized("JWT secret not configured")

        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                leeway=self._leeway,
            )
        except InvalidTokenError as e:
            logger.debug("Token rejected: %s", e)
            raise Unauthorized("Invalid token") from e

        user_id = payload.get(self._claim)
        if not isinstance(user_id, str) or not user_id:
            raise Unauthorized("Invalid token payload")
        return user_id


def parse_bearer(header: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not header or not header.startswith("Bearer "):
        return None
    return header[len("Bearer "):].strip() or None
