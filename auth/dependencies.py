"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens arrive as "Authorization: Bearer <token>". The token is verified
by the SessionManager on app.state, which also confirms the account still
exists. Signature and expiry failures propagate as AuthError subclasses and
are rendered by the API's AuthError handler (401 with the error code).

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() raises HTTP 401 when no bearer token is present.
require_role() builds a dependency that raises HTTP 403 for other roles.

Layer rule: no imports from core/ or cache/.
  auth/dependencies.py may import from fastapi (for Depends/HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.errors import AuthError
from auth.models import Role, User


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def try_get_current_user(request: Request) -> User | None:
    """Authenticate the request if it carries a valid bearer token.

    Never raises -- returns None for a missing, invalid or expired token.
    """
    token = _bearer_token(request)
    if token is None:
        return None
    try:
        return request.app.state.sessions.current_user(token)
    except AuthError:
        return None


def get_current_user(request: Request) -> User:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return request.app.state.sessions.current_user(token)


def require_role(*allowed: Role) -> Callable[[Request], User]:
    """Return a dependency that admits only users whose role is in allowed.

    Use as a FastAPI dependency:
        @router.post("/admin-only")
        def route(user: User = Depends(require_role(Role.admin))): ...
    """
    allowed_set = frozenset(allowed)

    def _dependency(request: Request) -> User:
        user = get_current_user(request)
        if user.role not in allowed_set:
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "Insufficient role for this action."},
            )
        return user

    return _dependency
