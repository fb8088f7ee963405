"""
auth/dependencies.py -- FastAPI Depends() helpers for bearer authentication.

The surrounding service layer stores an AuthService on app.state.auth_service
at startup; these helpers resolve "Authorization: Bearer <jwt>" against it.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() raises HTTP 401 if unauthenticated.
require_admin() wraps get_current_user() and raises HTTP 403 if not admin.

AuthErrors become HTTPException with the {"code", "message"} detail shape;
non-public errors carry only the opaque message.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.errors import AuthError, UnauthorizedError
from auth.models import User
from auth.service import AuthService


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:] or None
    return None


def to_http_exception(error: AuthError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.to_dict()["error"])


def try_get_current_user(request: Request) -> User | None:
    """Return the authenticated User, or None. Never raises for bad tokens."""
    token = _bearer_token(request)
    if not token:
        return None
    try:
        return get_auth_service(request).get_current_user(token)
    except UnauthorizedError:
        return None


def get_current_user(request: Request) -> User:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    token = _bearer_token(request)
    if not token:
        raise to_http_exception(UnauthorizedError("Authentication required."))
    try:
        return get_auth_service(request).get_current_user(token)
    except AuthError as exc:
        raise to_http_exception(exc) from exc


def require_admin(request: Request) -> User:
    """Require the admin role. 401 if unauthenticated, 403 if not admin."""
    user = get_current_user(request)
    if user.role != "admin":
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return user
