"""FastAPI dependencies resolving the authenticated caller."""
from typing import Optional

from fastapi import Depends, Header, HTTPException

from connectly.engine import Engine, get_engine

from .service import Unauthorized, parse_bearer


def get_current_user_id(
    authorization: Optional[str] = Header(None),
    engine: Engine = Depends(get_engine),
) -> str:
    """Verify the bearer token and return the caller's user id (401 otherwise)."""
    try:
        return engine.verifier.verify(parse_bearer(authorization))
    except Unauthorized as e:
        raise HTTPException(status_code=401, detail=e.message)
