"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The client-held session lives in Starlette's signed session cookie
(SessionMiddleware). These helpers translate request.session to a
ClientSession, run the facade's check (which may transparently refresh the
access token), and write the result back to the cookie.

try_get_session() is the soft variant (returns None on failure).
get_current_session() wraps it and raises HTTP 401 if unauthenticated.

Layer rule: auth/dependencies.py may import from fastapi because this module
is part of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.facade import AuthFacade
from auth.models import ClientSession


def get_facade(request: Request) -> AuthFacade:
    return request.app.state.auth


def store_session(request: Request, session: ClientSession) -> None:
    """Replace the cookie session contents with session (empty if anonymous)."""
    request.session.clear()
    request.session.update(session.to_mapping())


def try_get_session(request: Request) -> ClientSession | None:
    """Return the authenticated ClientSession, or None.

    Never raises. Whatever the check did to the session (refreshed token,
    cleared fields) is persisted back to the cookie.
    """
    session = ClientSession.from_mapping(request.session)
    if session.is_anonymous:
        return None
    authenticated = get_facade(request).check_authenticated(session)
    store_session(request, session)
    return session if authenticated else None


def get_current_session(request: Request) -> ClientSession:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(session: ClientSession = Depends(get_current_session)): ...
    """
    session = try_get_session(request)
    if session is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return session
