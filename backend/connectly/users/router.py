"""User search router."""
from typing import List

from fastapi import APIRouter, Depends, Query

from connectly.auth.dependencies import get_current_user_id
from connectly.chat.errors import ChatError, handle_chat_error
from connectly.chat.models import User
from connectly.engine import Engine, get_engine

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("/search", response_model=List[User])
async def search_users(
    email: str = Query("", description="Email fragment to match"),
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
) -> List[User]:
    """Find other users by a case-insensitive email fragment (max 10)."""
    try:
        return engine.chat_service.search_users(email, user_id)
    except ChatError as e:
        raise handle_chat_error(e)
