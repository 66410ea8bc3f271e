"""Error taxonomy for chat lifecycle operations.

Every error carries the HTTP status the router boundary should answer with.
Lifecycle errors are always raised before any event is emitted.
"""
from fastapi import HTTPException


class ChatError(Exception):
    """Base exception for chat errors."""
    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class ValidationError(ChatError):
    """Raised for malformed or empty input the client can correct."""
    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class ForbiddenError(ChatError):
    """Raised when the caller lacks rights over the entity."""
    def __init__(self, message: str = "Not allowed"):
        super().__init__(message, status_code=403)


class NotFoundError(ChatError):
    """Raised when a referenced chat, message or user does not exist."""
    def __init__(self, message: str):
        super().__init__(message, status_code=404)


class ConflictError(ChatError):
    """Raised when an operation is invalid for the entity's current state."""
    def __init__(self, message: str):
        super().__init__(message, status_code=409)


def handle_chat_error(error: ChatError) -> HTTPException:
    """Convert a ChatError to an HTTPException.

    Args:
        error: The ChatError to convert.

    Returns:
        HTTPException with appropriate status code and detail.
    """
    return HTTPException(
        status_code=error.status_code,
        detail=error.message,
    )
