"""
api/routes/v1/auth.py -- Authentication and session REST endpoints.

Routes:
  POST   /api/auth/register               -- create account; starts a session
  POST   /api/auth/login                  -- email-or-username login; sets cookies
  POST   /api/auth/logout                 -- deletes current session; clears cookies
  GET    /api/auth/me                     -- current user (requires auth)
  POST   /api/auth/refresh                -- rotate refresh token; new access token
  GET    /api/auth/sessions               -- list own sessions (requires auth)
  DELETE /api/auth/sessions/{session_id}  -- revoke one own session (requires auth)
  POST   /api/auth/logout-all             -- revoke every own session (requires auth)

Security:
  [H2] POST /login and /register are rate-limited per IP (Settings.login_rate_limit,
       Settings.register_rate_limit).
  [C1] auth.sessions.login() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that carries tokens.
  [R1] /refresh rotates the refresh token; a rotated-out token revokes its session.
  IDOR guard: DELETE /sessions/{id} passes user_id to the store; the store checks ownership.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.errors import api_error, not_found
from api.limiter import limiter, login_limit, register_limit
from api.models import (
    AuthResponse,
    LoginRequest,
    MeResponse,
    MessageResponse,
    RefreshResponse,
    RegisterRequest,
    SessionResponse,
    UserResponse,
)
from auth import sessions as auth_sessions
from auth.dependencies import extract_access_token, extract_refresh_token, get_current_user
from auth.models import User
from auth.sessions import AuthError, IssuedTokens
from auth.store import UserStore
from auth.tokens import clear_auth_cookies, hash_password, set_auth_cookies
from core.config import get_settings
from market import notifications

logger = logging.getLogger("etheryte.auth")

# Auth policy:
# - POST   /api/auth/register:        public, rate-limited
# - POST   /api/auth/login:           public, rate-limited
# - POST   /api/auth/logout:          public -- clearing cookies needs no prior auth
# - POST   /api/auth/refresh:         public -- authenticated by the refresh token itself
# - GET    /api/auth/me:              requires auth (get_current_user)
# - GET    /api/auth/sessions:        requires auth (get_current_user)
# - DELETE /api/auth/sessions/{id}:   requires auth + ownership check in store
# - POST   /api/auth/logout-all:      requires auth (get_current_user)
router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def _token_response(issued: IssuedTokens, message: str, status_code: int = 200) -> JSONResponse:
    body = AuthResponse(
        message=message,
        user=UserResponse.from_domain(issued.user),
        access_token=issued.access_token,
        refresh_token=issued.refresh_token,
        token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
        expires_in=get_settings().access_token_expire_seconds,
    )
    resp = JSONResponse(status_code=status_code, content=body.model_dump())
    set_auth_cookies(resp, issued.access_token, issued.refresh_token, issued.session_seconds)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _auth_failure(exc: AuthError, clear_cookies: bool = False) -> JSONResponse:
    resp = JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": exc.code, "message": exc.message, "detail": None}},
    )
    if clear_cookies:
        clear_auth_cookies(resp)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(register_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a USER account and sign it in.

    Accounts are auto-verified. Email and username are stored lowercase, so
    "Alice" and "alice" collide and return 409.
    """
    user_store: UserStore = request.app.state.user_store

    if user_store.get_by_email(body.email) is not None:
        raise api_error(409, "conflict", "User with this email already exists.")
    if user_store.get_by_username(body.username) is not None:
        raise api_error(409, "conflict", "User with this username already exists.")

    new_user = User(
        email=body.email,
        username=body.username,
        hashed_password=hash_password(body.password),
        role="USER",
        first_name=body.first_name,
        last_name=body.last_name,
        wallet_address=body.wallet_address,
        bio=body.bio,
        is_verified=True,
    )
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError as exc:
        # Lost a race with a concurrent registration for the same identity.
        raise api_error(409, "conflict", "User with this email or username already exists.") from exc

    created = user_store.get_by_id(user_id)
    issued = auth_sessions.start_session(
        user_store,
        created,
        user_agent=request.headers.get("User-Agent"),
        ip_address=_client_ip(request),
    )
    logger.info("Registered user_id=%s username=%s", created.id, created.username)
    notifications.send_welcome(created.email, created.username)
    return _token_response(issued, "User registered successfully.", status_code=201)


@limiter.limit(login_limit)  # [H2] brute-force mitigation
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email or username and password; set auth cookies.

    Wrong identifier and wrong password return the same 401
    invalid_credentials so account existence is not revealed.
    """
    user_store: UserStore = request.app.state.user_store
    try:
        issued = auth_sessions.login(
            user_store,
            body.email_or_username,
            body.password,
            remember_me=body.remember_me,
            user_agent=request.headers.get("User-Agent"),
            ip_address=_client_ip(request),
        )
    except AuthError as exc:
        logger.warning("Login failed (%s) from %s", exc.code, _client_ip(request))
        return _auth_failure(exc)
    return _token_response(issued, "Login successful.")


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Delete the current session if it can be identified; always clear cookies."""
    user_store: UserStore = request.app.state.user_store
    session_id = auth_sessions.session_id_from_tokens(extract_access_token(request), extract_refresh_token(request))
    auth_sessions.logout(user_store, session_id)
    resp = JSONResponse(content=MessageResponse(message="Logged out successfully.").model_dump())
    clear_auth_cookies(resp)
    return resp


@router.post("/auth/refresh", response_model=RefreshResponse)
def refresh(request: Request) -> JSONResponse:
    """Exchange a refresh token for a new access/refresh pair [R1].

    Any failure clears the auth cookies so the browser stops replaying a
    dead token.
    """
    user_store: UserStore = request.app.state.user_store
    token = extract_refresh_token(request)
    if not token:
        return _auth_failure(AuthError("unauthorized", "Refresh token required."), clear_cookies=True)
    try:
        issued = auth_sessions.refresh_session(user_store, token)
    except AuthError as exc:
        return _auth_failure(exc, clear_cookies=True)

    resp = JSONResponse(
        content=RefreshResponse(
            access_token=issued.access_token,
            refresh_token=issued.refresh_token,
            token_type="bearer",  # noqa: S106 # nosec B106
            expires_in=get_settings().access_token_expire_seconds,
        ).model_dump()
    )
    set_auth_cookies(resp, issued.access_token, issued.refresh_token, issued.session_seconds)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return the currently authenticated user. Password fields are never included."""
    return MeResponse(user=UserResponse.from_domain(current_user))


@router.get("/auth/sessions", response_model=list[SessionResponse])
def list_sessions(request: Request, current_user: User = Depends(get_current_user)) -> list[SessionResponse]:
    """List the caller's sessions, most recently active first. The current one is flagged."""
    user_store: UserStore = request.app.state.user_store
    current_id = getattr(request.state, "session_id", None)
    return [SessionResponse.from_domain(s, current_id) for s in user_store.list_sessions(current_user.id)]


@router.delete("/auth/sessions/{session_id}", status_code=204)
def revoke_session(
    request: Request,
    session_id: str,
    current_user: User = Depends(get_current_user),
) -> Response:
    """Revoke one of the caller's sessions. Someone else's session id is a 404."""
    user_store: UserStore = request.app.state.user_store
    if not user_store.delete_session(session_id, user_id=current_user.id):
        raise not_found("Session")
    return Response(status_code=204)


@router.post("/auth/logout-all", response_model=MessageResponse)
def logout_all(request: Request, current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Revoke every session belonging to the caller, including the current one."""
    user_store: UserStore = request.app.state.user_store
    count = auth_sessions.logout_all(user_store, current_user.id)
    resp = JSONResponse(content=MessageResponse(message=f"Logged out of {count} sessions.").model_dump())
    clear_auth_cookies(resp)
    return resp
