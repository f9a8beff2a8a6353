"""
auth/roles.py -- Role hierarchy for coarse authorization checks.

Roles are ordinal: USER < MODERATOR < ADMIN. A check passes when the user's
rank is greater than or equal to the required rank, so an ADMIN satisfies
every MODERATOR gate.

Unknown role strings rank 0 and therefore fail every check.
"""

from __future__ import annotations

USER = "USER"
MODERATOR = "MODERATOR"
ADMIN = "ADMIN"

ROLE_RANKS: dict[str, int] = {
    USER: 1,
    MODERATOR: 2,
    ADMIN: 3,
}

ROLES: tuple[str, ...] = tuple(ROLE_RANKS)


def rank_of(role: str | None) -> int:
    return ROLE_RANKS.get(role or "", 0)


def has_permission(user_role: str | None, required_role: str) -> bool:
    """Return True if user_role meets or exceeds required_role."""
    return rank_of(user_role) >= rank_of(required_role)
