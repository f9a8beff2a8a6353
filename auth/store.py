"""
auth/store.py -- SQLAlchemy Core persistence layer for users and sessions.

Pattern: Repository + Data Mapper (same as market/store.py).
UserStore is the repository; _row_to_user / _row_to_session are the mappers.
Route and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

The schema MetaData is public (`metadata`) because market/store.py declares
its tables on the same MetaData so foreign keys to users.id resolve. Both
stores may point at the same database URL; create_all is idempotent.

SQLite connections run with WAL journaling and foreign_keys=ON so that
ON DELETE CASCADE on user_sessions (and the market tables) is honoured.

Layer rule: no imports from api/ or market/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import User, UserSession

logger = logging.getLogger("etheryte.store")

_DEFAULT_DB_URL = "sqlite:///etheryte.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("username", String(50), nullable=False, unique=True),
    Column("hashed_password", Text),
    Column("role", String(20), nullable=False, server_default="USER"),
    Column("first_name", String(50)),
    Column("last_name", String(50)),
    Column("avatar", Text),
    Column("bio", Text),
    Column("wallet_address", String(42)),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("is_suspended", Integer, nullable=False, server_default="0"),
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("two_factor_enabled", Integer, nullable=False, server_default="0"),
    Column("last_login_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_sessions = Table(
    "user_sessions",
    metadata,
    Column("id", String(36), primary_key=True),  # uuid4, carried as the "sid" claim
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("refresh_jti", String(36)),
    Column("user_agent", Text),
    Column("ip_address", String(45)),
    Column("expires_at", String(32), nullable=False),
    Column("last_activity_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

_BOOL_FIELDS = ("is_active", "is_suspended", "is_verified", "two_factor_enabled")

_USER_SORT_COLUMNS = {
    "created_at": _users.c.created_at,
    "username": _users.c.username,
    "email": _users.c.email,
    "last_login_at": _users.c.last_login_at,
}


# ---------------------------------------------------------------------------
# Connection hooks
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journaling and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def make_engine(db_url: str) -> Engine:
    """Create an Engine with the SQLite-specific settings both stores need."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


LIKE_ESCAPE = "\\"


def like_pattern(value: str) -> str:
    """Lowercased substring pattern for LIKE, with % _ and \\ matched literally.

    Use with .like(pattern, escape=LIKE_ESCAPE).
    """
    escaped = value.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and UserSession entities.

    Usage:
        store = UserStore()
        uid = store.create_user(User(email="a@b.io", username="alice", hashed_password=hash_password("pw")))
        user = store.get_by_login("alice")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        self.engine: Engine = make_engine(db_url)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        email and username are lowercased here so every write path agrees
        with the case-insensitive lookups below.

        Raises sqlalchemy.exc.IntegrityError if email or username already
        exists. Routes map that to 409.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email.lower(),
                    username=user.username.lower(),
                    hashed_password=user.hashed_password,
                    role=user.role,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    avatar=user.avatar,
                    bio=user.bio,
                    wallet_address=user.wallet_address,
                    is_active=1 if user.is_active else 0,
                    is_suspended=1 if user.is_suspended else 0,
                    is_verified=1 if user.is_verified else 0,
                    two_factor_enabled=1 if user.two_factor_enabled else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_username(self, username: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username.lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_login(self, identifier: str) -> User | None:
        """Look up a user by email OR username (case-insensitive)."""
        ident = identifier.strip().lower()
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(or_(_users.c.email == ident, _users.c.username == ident))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(
        self,
        *,
        search: str | None = None,
        role: str | None = None,
        is_verified: bool | None = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[User], int]:
        """Return one page of users plus the total count matching the filters."""
        conditions = []
        if search:
            pattern = like_pattern(search)
            conditions.append(
                or_(
                    _users.c.email.like(pattern, escape=LIKE_ESCAPE),
                    _users.c.username.like(pattern, escape=LIKE_ESCAPE),
                    func.lower(_users.c.first_name).like(pattern, escape=LIKE_ESCAPE),
                    func.lower(_users.c.last_name).like(pattern, escape=LIKE_ESCAPE),
                )
            )
        if role:
            conditions.append(_users.c.role == role)
        if is_verified is not None:
            conditions.append(_users.c.is_verified == (1 if is_verified else 0))

        column = _USER_SORT_COLUMNS.get(sort_by, _users.c.created_at)
        order = column.asc() if sort_order == "asc" else column.desc()

        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(_users).where(*conditions)).scalar() or 0
            rows = conn.execute(
                _users.select().where(*conditions).order_by(order, _users.c.id).offset(offset).limit(limit)
            ).fetchall()
        return [_row_to_user(r) for r in rows], total

    def count_by_role(self) -> dict[str, int]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(_users.c.role, func.count()).group_by(_users.c.role)).fetchall()
        return {role: count for role, count in rows}

    def count_by_verified(self) -> dict[str, int]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(_users.c.is_verified, func.count()).group_by(_users.c.is_verified)).fetchall()
        counts = {"verified": 0, "unverified": 0}
        for flag, count in rows:
            counts["verified" if flag else "unverified"] += count
        return counts

    def count_users(self, since: str | None = None) -> int:
        """Count users, optionally only those created at or after `since` (ISO 8601)."""
        query = select(func.count()).select_from(_users)
        if since:
            query = query.where(_users.c.created_at >= since)
        with self.engine.connect() as conn:
            return conn.execute(query).scalar() or 0

    def recent_users(self, limit: int = 5) -> list[User]:
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.created_at.desc()).limit(limit)).fetchall()
        return [_row_to_user(r) for r in rows]

    def get_users_by_ids(self, user_ids: set[int]) -> dict[int, User]:
        """Batch lookup used to embed creator/bidder summaries without N+1 queries."""
        if not user_ids:
            return {}
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().where(_users.c.id.in_(user_ids))).fetchall()
        return {r.id: _row_to_user(r) for r in rows}

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Boolean flags are converted to 0/1 for SQLite. updated_at is stamped
        on every call. Returns True if a row was updated.
        """
        for name in _BOOL_FIELDS:
            if name in fields:
                fields[name] = 1 if fields[name] else 0
        fields["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def count_active_admins(self) -> int:
        """Return the number of active ADMIN users.

        Used by PUT/DELETE /users/{id} to keep at least one admin [M4].
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_users).where((_users.c.role == "ADMIN") & (_users.c.is_active == 1))
            ).scalar()
        return result or 0

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user. Sessions and market rows cascade."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login_at=_now_iso()))
            conn.commit()

    # ------------------------------------------------------------------
    # Session queries
    # ------------------------------------------------------------------

    def create_session(self, session: UserSession) -> str:
        now = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    user_id=session.user_id,
                    refresh_jti=session.refresh_jti,
                    user_agent=session.user_agent,
                    ip_address=session.ip_address,
                    expires_at=session.expires_at,
                    last_activity_at=now,
                    created_at=now,
                )
            )
            conn.commit()
        return session.id

    def get_session(self, session_id: str) -> UserSession | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def touch_session(self, session_id: str) -> None:
        """Stamp last_activity_at on every authenticated request."""
        with self.engine.connect() as conn:
            conn.execute(_sessions.update().where(_sessions.c.id == session_id).values(last_activity_at=_now_iso()))
            conn.commit()

    def rotate_refresh_jti(self, session_id: str, old_jti: str | None, new_jti: str) -> bool:
        """Swap the accepted refresh jti, only if old_jti is still current.

        The compare-and-set WHERE clause means two concurrent refreshes with
        the same token cannot both succeed. Returns True if this call won.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.id == session_id) & (_sessions.c.refresh_jti == old_jti))
                .values(refresh_jti=new_jti, last_activity_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def list_sessions(self, user_id: int) -> list[UserSession]:
        """Return a user's sessions, most recently active first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select()
                .where(_sessions.c.user_id == user_id)
                .order_by(_sessions.c.last_activity_at.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def delete_session(self, session_id: str, user_id: int | None = None) -> bool:
        """Delete one session. When user_id is given, ownership must match (IDOR guard)."""
        condition = _sessions.c.id == session_id
        if user_id is not None:
            condition = condition & (_sessions.c.user_id == user_id)
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(condition))
            conn.commit()
        return result.rowcount > 0

    def delete_user_sessions(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def purge_expired_sessions(self) -> int:
        """Delete every session whose expires_at is in the past. Returns the count."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at < _now_iso()))
            conn.commit()
        return result.rowcount

    def count_active_sessions(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_sessions).where(_sessions.c.expires_at >= _now_iso())
            ).scalar()
        return result or 0

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
        except SQLAlchemyError:
            logger.exception("Database ping failed")
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        username=row.username,
        hashed_password=row.hashed_password,
        role=row.role,
        first_name=row.first_name,
        last_name=row.last_name,
        avatar=row.avatar,
        bio=row.bio,
        wallet_address=row.wallet_address,
        is_active=bool(row.is_active),
        is_suspended=bool(row.is_suspended),
        is_verified=bool(row.is_verified),
        two_factor_enabled=bool(row.two_factor_enabled),
        last_login_at=row.last_login_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_session(row) -> UserSession:
    return UserSession(
        id=row.id,
        user_id=row.user_id,
        refresh_jti=row.refresh_jti,
        user_agent=row.user_agent,
        ip_address=row.ip_address,
        expires_at=row.expires_at,
        last_activity_at=row.last_activity_at,
        created_at=row.created_at,
    )
