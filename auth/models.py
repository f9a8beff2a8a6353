"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the
session service do the work; these only carry shape.

Layer rule: no imports from api/ or market/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A marketplace account.

    email and username are stored lowercase; lookups lowercase their input
    so login is case-insensitive.

    role is one of "USER", "MODERATOR", "ADMIN" (see auth/roles.py for ranks).
    hashed_password is never serialized by the API layer.
    """

    email: str
    username: str
    role: str = "USER"
    id: int | None = None
    hashed_password: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    avatar: str | None = None
    bio: str | None = None
    wallet_address: str | None = None
    is_active: bool = True
    is_suspended: bool = False
    is_verified: bool = False
    two_factor_enabled: bool = False
    last_login_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class UserSession:
    """Server-side record of one login.

    id is a uuid4 string and is embedded in both tokens as the "sid" claim.
    refresh_jti holds the jti of the only refresh token currently accepted
    for this session; it changes on every rotation.
    """

    id: str
    user_id: int
    expires_at: str  # ISO 8601 UTC
    refresh_jti: str | None = None
    user_agent: str | None = None
    ip_address: str | None = None
    last_activity_at: str | None = None
    created_at: str | None = None
