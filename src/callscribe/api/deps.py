"""Request-scoped accessors for objects owned by the application."""

from fastapi import HTTPException, Request

from ..core.call_service import CallService
from ..core.models import parse_session_key


def get_call_service(request: Request) -> CallService:
    return request.app.state.call_service


def require_session_id(session_id: str) -> str:
    """Canonical session id from a path parameter; 400 when it is not a UUID."""
    key = parse_session_key(session_id)
    if key is None:
        raise HTTPException(status_code=400, detail="Invalid call session id.")
    return key
