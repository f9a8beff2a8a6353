"""
tests/helpers.py -- Factories shared by the fixtures and the test modules.

Every factory writes through the real stores, so the records carry the
same defaults (lowercased identity, generated token ids, timestamps) as
records created through the API.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient
from sqlalchemy import text

from auth.models import User
from auth.sessions import start_session
from auth.store import UserStore
from auth.tokens import hash_password
from market.models import NFT, Collection
from market.store import MarketStore, slugify

PASSWORD = "Str0ngPass!"  # noqa: S105 # nosec B105 -- test fixture credential


def _suffix() -> str:
    return uuid.uuid4().hex[:8]


def make_db_url(name: str) -> str:
    """Named shared-memory SQLite URL; unique per call so fixtures never share state."""
    return f"sqlite:///file:test_{name}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_user(store: UserStore, username: str | None = None, role: str = "USER", **fields) -> User:
    """Create a verified user with PASSWORD and return the stored record."""
    username = username or f"user_{_suffix()}"
    uid = store.create_user(
        User(
            email=fields.pop("email", f"{username}@etheryte.io"),
            username=username,
            hashed_password=hash_password(PASSWORD),
            role=role,
            is_verified=fields.pop("is_verified", True),
            **fields,
        )
    )
    return store.get_by_id(uid)


def bearer(store: UserStore, user: User) -> dict[str, str]:
    """Open a fresh session for user and return an Authorization header for it."""
    issued = start_session(store, user)
    return {"Authorization": f"Bearer {issued.access_token}"}


def expire_session(store: UserStore, session_id: str) -> None:
    """Backdate a session's expires_at so it is already past."""
    past = (datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat()
    with store.engine.begin() as conn:
        conn.execute(text("UPDATE user_sessions SET expires_at = :past WHERE id = :sid"), {"past": past, "sid": session_id})


def make_nft(market: MarketStore, owner: User, **fields) -> NFT:
    nft_id = market.create_nft(
        NFT(
            name=fields.pop("name", f"Token {_suffix()}"),
            image=fields.pop("image", "https://images.etheryte.io/t.png"),
            price=fields.pop("price", 1.0),
            category=fields.pop("category", "Art"),
            creator_id=owner.id,
            owner_id=owner.id,
            **fields,
        )
    )
    return market.get_nft(nft_id)


def make_collection(market: MarketStore, creator: User, name: str | None = None) -> Collection:
    name = name or f"Collection {_suffix()}"
    cid = market.create_collection(Collection(name=name, slug=slugify(name), creator_id=creator.id))
    return market.get_collection(cid)


@dataclass
class ApiContext:
    """What the api_client fixture yields: client, stores, and three signed-in roles."""

    client: TestClient
    user_store: UserStore
    market: MarketStore
    admin: User
    moderator: User
    user: User
    admin_headers: dict[str, str]
    moderator_headers: dict[str, str]
    user_headers: dict[str, str]

    def new_user(self, role: str = "USER", **fields) -> tuple[User, dict[str, str]]:
        user = make_user(self.user_store, role=role, **fields)
        return user, bearer(self.user_store, user)
