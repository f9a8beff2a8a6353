"""
auth/sessions.py -- Session lifecycle: login, authenticate, refresh, logout.

Every login creates a UserSession row; both tokens carry its id as "sid".
Deleting the row (logout, revoke, user deletion cascade, expiry purge)
invalidates both tokens on the next request, even before the access JWT
reaches its own exp.

Refresh rotation:
  The session stores the jti of the single refresh token it currently
  accepts. refresh_session() mints a new pair and swaps the jti with a
  compare-and-set. Presenting a refresh token whose jti is no longer
  current means the token was already rotated out; the session is deleted
  so whoever holds the newer token is logged out too [R1].

Failures raise AuthError carrying a machine code and an HTTP status.
The FastAPI dependency and route layers translate it to HTTPException;
this module stays framework-free.

Layer rule: no imports from api/ or market/.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from auth.models import User, UserSession
from auth.store import UserStore
from auth.tokens import (
    create_access_token,
    create_refresh_token,
    decode_access_token,
    decode_refresh_token,
    equalize_timing,
    verify_password,
)
from core.config import get_settings

logger = logging.getLogger("etheryte.auth")

_settings = get_settings()


class AuthError(Exception):
    """Authentication failure with a stable machine-readable code."""

    def __init__(self, code: str, message: str, status_code: int = 401) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


@dataclass
class IssuedTokens:
    """Result of a login, registration, or refresh."""

    user: User
    session_id: str
    access_token: str
    refresh_token: str
    session_seconds: int  # remaining session lifetime; sizes the refresh cookie


@dataclass
class AuthContext:
    """The authenticated principal for one request."""

    user: User
    session_id: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _parse_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_expired(session: UserSession) -> bool:
    return _parse_iso(session.expires_at) <= datetime.now(timezone.utc)


def _check_account_state(user: User) -> None:
    """Reject accounts that may not sign in. Runs only after the password matched."""
    if not user.is_active:
        raise AuthError("account_inactive", "Account is deactivated.", 403)
    if user.is_suspended:
        raise AuthError("account_suspended", "Account is suspended.", 403)
    if not user.is_verified:
        raise AuthError("email_not_verified", "Email address is not verified.", 403)


def _usable(user: User | None) -> bool:
    return user is not None and user.is_active and not user.is_suspended


# ---------------------------------------------------------------------------
# Login / session creation
# ---------------------------------------------------------------------------


def start_session(
    store: UserStore,
    user: User,
    *,
    remember_me: bool = False,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> IssuedTokens:
    """Create a session row for an already-verified user and issue both tokens."""
    ttl = _settings.remember_me_expire_seconds if remember_me else _settings.session_expire_seconds
    session_id = str(uuid.uuid4())
    refresh_jti = str(uuid.uuid4())
    store.create_session(
        UserSession(
            id=session_id,
            user_id=user.id,
            refresh_jti=refresh_jti,
            user_agent=user_agent,
            ip_address=ip_address,
            expires_at=(datetime.now(timezone.utc) + timedelta(seconds=ttl)).isoformat(),
        )
    )
    refresh_ttl = ttl if remember_me else 0
    return IssuedTokens(
        user=user,
        session_id=session_id,
        access_token=create_access_token(user.id, user.email, user.role, session_id),
        refresh_token=create_refresh_token(user.id, session_id, refresh_jti, expire_seconds=refresh_ttl),
        session_seconds=ttl,
    )


def login(
    store: UserStore,
    identifier: str,
    password: str,
    *,
    remember_me: bool = False,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> IssuedTokens:
    """Verify credentials, create a session, and issue tokens.

    Always runs bcrypt whether or not the account exists [C1]. Account
    state (inactive, suspended, unverified) is only reported after the
    password has been proven, so those codes never leak to a guesser.
    """
    user = store.get_by_login(identifier)
    if user is None or not user.hashed_password:
        equalize_timing(password)
        raise AuthError("invalid_credentials", "Invalid credentials.")
    if not verify_password(password, user.hashed_password):
        raise AuthError("invalid_credentials", "Invalid credentials.")
    _check_account_state(user)

    issued = start_session(store, user, remember_me=remember_me, user_agent=user_agent, ip_address=ip_address)
    store.update_last_login(user.id)
    logger.info("Login succeeded for user_id=%s session=%s", user.id, issued.session_id)
    return issued


# ---------------------------------------------------------------------------
# Per-request authentication
# ---------------------------------------------------------------------------


def _session_user(store: UserStore, session_id: str, user_id: int) -> tuple[UserSession, User] | None:
    session = store.get_session(session_id)
    if session is None or session.user_id != user_id or is_expired(session):
        return None
    user = store.get_by_id(user_id)
    if not _usable(user):
        return None
    return session, user


def authenticate(store: UserStore, access_token: str | None, refresh_token: str | None) -> AuthContext:
    """Resolve the request principal.

    1. A valid access token whose session is alive wins.
    2. Otherwise a refresh token is tried: it must decode, its session must
       exist and be unexpired, and its jti must be the session's current one.
    3. last_activity_at is stamped on success.
    """
    if not access_token and not refresh_token:
        raise AuthError("unauthorized", "Authentication required.")

    if access_token:
        payload = decode_access_token(access_token)
        if payload:
            found = _session_user(store, payload["sid"], payload["user_id"])
            if found:
                session, user = found
                store.touch_session(session.id)
                return AuthContext(user=user, session_id=session.id)

    if not refresh_token:
        raise AuthError("unauthorized", "Authentication required.")

    payload = decode_refresh_token(refresh_token)
    if payload is None:
        raise AuthError("invalid_refresh_token", "Invalid refresh token.")
    session = store.get_session(payload["sid"])
    if session is None or session.user_id != payload["user_id"] or is_expired(session):
        raise AuthError("session_expired", "Session expired.")
    if session.refresh_jti != payload.get("jti"):
        raise AuthError("invalid_refresh_token", "Invalid refresh token.")
    user = store.get_by_id(session.user_id)
    if not _usable(user):
        raise AuthError("unauthorized", "Authentication required.")
    store.touch_session(session.id)
    return AuthContext(user=user, session_id=session.id)


# ---------------------------------------------------------------------------
# Refresh rotation [R1]
# ---------------------------------------------------------------------------


def refresh_session(store: UserStore, refresh_token: str) -> IssuedTokens:
    """Rotate a refresh token: new access + refresh pair for the same session."""
    payload = decode_refresh_token(refresh_token)
    if payload is None:
        raise AuthError("invalid_refresh_token", "Invalid refresh token.")

    session = store.get_session(payload["sid"])
    if session is None or session.user_id != payload["user_id"] or is_expired(session):
        raise AuthError("session_expired", "Session expired.")

    presented_jti = payload.get("jti")
    if session.refresh_jti != presented_jti:
        store.delete_session(session.id)
        logger.warning("Refresh token reuse detected; revoked session=%s user_id=%s", session.id, session.user_id)
        raise AuthError("invalid_refresh_token", "Refresh token has already been used.")

    user = store.get_by_id(session.user_id)
    if not _usable(user):
        raise AuthError("unauthorized", "Authentication required.")

    new_jti = str(uuid.uuid4())
    if not store.rotate_refresh_jti(session.id, presented_jti, new_jti):
        raise AuthError("invalid_refresh_token", "Refresh token has already been used.")

    # Keep the refresh token's remaining lifetime aligned with the session.
    remaining = int((_parse_iso(session.expires_at) - datetime.now(timezone.utc)).total_seconds())
    return IssuedTokens(
        user=user,
        session_id=session.id,
        access_token=create_access_token(user.id, user.email, user.role, session.id),
        refresh_token=create_refresh_token(user.id, session.id, new_jti, expire_seconds=max(remaining, 1)),
        session_seconds=max(remaining, 1),
    )


# ---------------------------------------------------------------------------
# Logout / cleanup
# ---------------------------------------------------------------------------


def session_id_from_tokens(access_token: str | None, refresh_token: str | None) -> str | None:
    """Best-effort extraction of the session id for logout.

    Either token identifies the session. Expired or tampered tokens yield
    None; logout then only clears cookies.
    """
    if access_token:
        payload = decode_access_token(access_token)
        if payload:
            return payload["sid"]
    if refresh_token:
        payload = decode_refresh_token(refresh_token)
        if payload:
            return payload["sid"]
    return None


def logout(store: UserStore, session_id: str | None) -> bool:
    """Delete the session if known. Returns True if a row was removed."""
    if not session_id:
        return False
    removed = store.delete_session(session_id)
    if removed:
        logger.info("Logged out session=%s", session_id)
    return removed


def logout_all(store: UserStore, user_id: int) -> int:
    count = store.delete_user_sessions(user_id)
    logger.info("Revoked %d sessions for user_id=%s", count, user_id)
    return count


def cleanup_expired_sessions(store: UserStore) -> int:
    count = store.purge_expired_sessions()
    if count:
        logger.info("Purged %d expired sessions", count)
    return count
