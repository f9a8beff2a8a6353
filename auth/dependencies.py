"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Token sources are checked in priority order:
  Access token:
    1. "access-token" cookie -- set by login/refresh.
    2. "auth-token" cookie -- legacy name, mirrors the access token.
    3. Authorization header -- "Bearer <jwt>" or a bare "<jwt>".
  Refresh token (fallback when the access token is missing or dead):
    1. "refresh-token" cookie.
    2. X-Refresh-Token header.

get_current_user() raises HTTP 401 with the AuthError code if unauthenticated.
require_role(role) builds a dependency that also raises 403 below that rank.

The resolved session id is stored on request.state.session_id so routes
like /auth/sessions can flag the current session.

Layer rule: no imports from api/ or market/.
  This module may import fastapi because it is part of the FastAPI
  dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.models import User
from auth.roles import ADMIN, has_permission
from auth.sessions import AuthContext, AuthError, authenticate
from auth.tokens import ACCESS_COOKIE, LEGACY_COOKIE, REFRESH_COOKIE


def extract_access_token(request: Request) -> str | None:
    token = request.cookies.get(ACCESS_COOKIE) or request.cookies.get(LEGACY_COOKIE)
    if token:
        return token
    auth_header = request.headers.get("Authorization", "").strip()
    if not auth_header:
        return None
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip() or None
    return auth_header


def extract_refresh_token(request: Request) -> str | None:
    return request.cookies.get(REFRESH_COOKIE) or request.headers.get("X-Refresh-Token") or None


def _resolve(request: Request) -> AuthContext:
    ctx = authenticate(
        request.app.state.user_store,
        extract_access_token(request),
        extract_refresh_token(request),
    )
    request.state.session_id = ctx.session_id
    return ctx


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    try:
        return _resolve(request).user
    except AuthError as exc:
        raise HTTPException(
            status_code=401,
            detail={"code": exc.code, "message": exc.message},
        ) from exc


def require_role(role: str) -> Callable[[Request], User]:
    """Build a dependency that requires at least `role` in the hierarchy.

    Raises HTTP 401 if unauthenticated, HTTP 403 if the rank is too low.
    """

    def dependency(request: Request) -> User:
        user = get_current_user(request)
        if not has_permission(user.role, role):
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": f"{role.title()} access required."},
            )
        return user

    dependency.__name__ = f"require_{role.lower()}"
    return dependency


require_admin = require_role(ADMIN)
