"""
auth/tokens.py -- JWT, password hashing, and auth cookie utilities.

Security design decisions:
  JWT: python-jose with HS256. Two token kinds, two secrets [M8]:
       access  -- short-lived (15 min default); sub, email, role, sid, jti.
       refresh -- long-lived (7 days default); sub, sid, jti.
       Each payload carries a "type" claim and decode_* rejects the wrong
       kind, so a refresh token can never be replayed as a bearer token even
       if the secrets were misconfigured to match.
       Verification returns None on any failure -- callers decide the status.

  Passwords: bcrypt directly. The _DUMMY_HASH constant enables timing
       equalization in the login flow so response time does not reveal
       whether an account exists [C1].

  Cookies: access-token, refresh-token, and the legacy auth-token (mirror of
       the access token for older clients). All httpOnly, samesite=lax.

Layer rule: no imports from api/ or market/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

logger = logging.getLogger("etheryte.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

ACCESS_COOKIE = "access-token"
REFRESH_COOKIE = "refresh-token"
LEGACY_COOKIE = "auth-token"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt truncates input at 72 bytes; the API layer caps passwords at 128
    characters, and the truncation only matters for multibyte-heavy input.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Timing equalization dummy hash [C1]. Computed once at module load.
_DUMMY_HASH: str = hash_password("etheryte_timing_dummy")


def equalize_timing(plain: str) -> None:
    """Burn one bcrypt check against the dummy hash."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def _expiry(seconds: int) -> datetime:
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)


def create_access_token(user_id: int, email: str, role: str, session_id: str, expire_seconds: int = 0) -> str:
    """Encode a signed access JWT bound to a session.

    Args:
        user_id:        Numeric user ID (stored as the string "sub" claim).
        email:          User email, informational only.
        role:           Role at issue time. Authorization re-reads the role
                        from the database, so a stale claim never grants access.
        session_id:     UserSession.id; logout deletes it and the token dies.
        expire_seconds: Lifetime override. 0 uses Settings.access_token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.access_token_expire_seconds
    payload = {
        "sub": str(user_id),
        "email": email,
        "role": role,
        "sid": session_id,
        "jti": str(uuid.uuid4()),
        "type": "access",
        "exp": _expiry(duration),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def create_refresh_token(user_id: int, session_id: str, jti: str, expire_seconds: int = 0) -> str:
    """Encode a signed refresh JWT. jti must match the session's refresh_jti to be accepted."""
    duration = expire_seconds if expire_seconds > 0 else _settings.refresh_token_expire_seconds
    payload = {
        "sub": str(user_id),
        "sid": session_id,
        "jti": jti,
        "type": "refresh",
        "exp": _expiry(duration),
    }
    return jwt.encode(payload, _settings.refresh_secret_key, algorithm=_ALGORITHM)


def _decode(token: str, secret: str, kind: str) -> dict | None:
    try:
        payload = jwt.decode(token, secret, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if payload.get("type") != kind or "sid" not in payload:
        return None
    try:
        payload["user_id"] = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        return None
    return payload


def decode_access_token(token: str) -> dict | None:
    """Decode and verify an access JWT. Returns the payload (with int user_id) or None."""
    return _decode(token, _settings.secret_key, "access")


def decode_refresh_token(token: str) -> dict | None:
    """Decode and verify a refresh JWT. Returns the payload (with int user_id) or None."""
    return _decode(token, _settings.refresh_secret_key, "refresh")


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookies(response, access_token: str, refresh_token: str, refresh_max_age: int) -> None:
    """Write access, refresh, and legacy cookies on the response.

    refresh_max_age is the remaining lifetime of the session the refresh
    token belongs to, so the cookie never outlives or undercuts it.
    """
    common = {
        "httponly": True,
        "samesite": "lax",
        "secure": _settings.secure_cookies,
        "path": "/",
    }
    response.set_cookie(ACCESS_COOKIE, value=access_token, max_age=_settings.access_token_expire_seconds, **common)
    response.set_cookie(REFRESH_COOKIE, value=refresh_token, max_age=refresh_max_age, **common)
    response.set_cookie(LEGACY_COOKIE, value=access_token, max_age=_settings.access_token_expire_seconds, **common)


def clear_auth_cookies(response) -> None:
    """Expire every auth cookie (max_age=0)."""
    for name in (ACCESS_COOKIE, REFRESH_COOKIE, LEGACY_COOKIE):
        response.set_cookie(
            name,
            value="",
            max_age=0,
            httponly=True,
            samesite="lax",
            secure=_settings.secure_cookies,
            path="/",
        )
