"""
market/store.py -- SQLAlchemy-backed persistence layer for the marketplace.

Uses SQLAlchemy Core (not ORM) so the dataclasses in market/models.py remain
the authoritative domain representation.

Pattern: Repository + Data Mapper. MarketStore is the repository (one clean
interface per entity). The _row_to_* functions are the mappers. Route
handlers never touch SQL directly.

Tables are declared on auth.store.metadata so that creator/owner/bidder
foreign keys resolve against users.id. Deleting a user cascades through
nfts, collections, bids, and transactions.

Multi-statement writes (auction creation, bid placement, transaction
recording) run inside engine.begin() so they commit or roll back as one.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = MarketStore("sqlite:///etheryte.db")
    nft_id = store.create_nft(nft)
    nfts, total = store.list_nfts(category="Art", offset=0, limit=20)
    store.close()
"""

import json
import re
import secrets
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Column,
    Float,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Engine

from auth.store import LIKE_ESCAPE, like_pattern, make_engine, metadata
from market.models import NFT, Auction, Bid, Collection, SystemSetting, Transaction

_DEFAULT_DB_URL = "sqlite:///etheryte.db"

# Transaction types that count towards traded volume.
VOLUME_TYPES = ("SALE", "AUCTION")

# Seeded on the first read of /admin/settings when the table is empty.
DEFAULT_SETTINGS: list[SystemSetting] = [
    SystemSetting("platform.name", "Etheryte", "string", "Marketplace display name"),
    SystemSetting("platform.description", "Discover, collect, and sell NFTs", "string", "Marketplace tagline"),
    SystemSetting("platform.fee_percentage", "2.5", "number", "Platform fee charged on sales (%)"),
    SystemSetting("security.max_login_attempts", "5", "number", "Failed logins allowed per minute per IP"),
    SystemSetting("security.session_timeout", "86400", "number", "Session lifetime in seconds"),
    SystemSetting("features.enable_auctions", "true", "boolean", "Allow users to create auctions"),
    SystemSetting("features.enable_collections", "true", "boolean", "Allow users to create collections"),
    SystemSetting("email.notifications_enabled", "true", "boolean", "Send transactional e-mail"),
]

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_users = metadata.tables["users"]

_collections = Table(
    "collections",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("slug", String(120), nullable=False),
    Column("description", Text),
    Column("image", Text),
    Column("banner", Text),
    Column("creator_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("creator_id", "name", name="uq_collection_creator_name"),
)

_nfts = Table(
    "nfts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token_id", String(64), nullable=False, unique=True),
    Column("contract_address", String(42), nullable=False),
    Column("name", String(100), nullable=False),
    Column("description", Text),
    Column("image", Text, nullable=False),
    Column("price", Float, nullable=False),
    Column("category", String(30), nullable=False),
    Column("creator_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("owner_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("collection_id", Integer, ForeignKey("collections.id", ondelete="SET NULL"), index=True),
    Column("is_listed", Integer, nullable=False, server_default="1"),
    Column("is_sold", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_auctions = Table(
    "auctions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("nft_id", Integer, ForeignKey("nfts.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("starting_price", Float, nullable=False),
    Column("reserve_price", Float),
    Column("current_price", Float, nullable=False),
    Column("start_time", String(32), nullable=False),
    Column("end_time", String(32), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_bids = Table(
    "bids",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("auction_id", Integer, ForeignKey("auctions.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("bidder_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("amount", Float, nullable=False),
    Column("created_at", String(32), nullable=False),
)

_transactions = Table(
    "transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("nft_id", Integer, ForeignKey("nfts.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("amount", Float, nullable=False),
    Column("transaction_hash", String(66), nullable=False, unique=True),
    Column("type", String(20), nullable=False),
    Column("created_at", String(32), nullable=False),
)

_settings = Table(
    "system_settings",
    metadata,
    Column("key", String(100), primary_key=True),
    Column("value", Text, nullable=False),
    Column("type", String(20), nullable=False, server_default="string"),
    Column("description", Text),
    Column("updated_at", String(32), nullable=False),
)

_NFT_SORT = {
    "created_at": _nfts.c.created_at,
    "updated_at": _nfts.c.updated_at,
    "price": _nfts.c.price,
    "name": _nfts.c.name,
}
_COLLECTION_SORT = {
    "created_at": _collections.c.created_at,
    "updated_at": _collections.c.updated_at,
    "name": _collections.c.name,
}
_AUCTION_SORT = {
    "created_at": _auctions.c.created_at,
    "end_time": _auctions.c.end_time,
    "current_price": _auctions.c.current_price,
}
_TRANSACTION_SORT = {
    "created_at": _transactions.c.created_at,
    "amount": _transactions.c.amount,
}


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class BidTooLow(Exception):
    """Raised by place_bid() when another bid raised the price first."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _order(columns: dict, sort_by: str, sort_order: str, default):
    column = columns.get(sort_by, default)
    return column.asc() if sort_order == "asc" else column.desc()


def slugify(name: str) -> str:
    """Lowercase, hyphen-separated ASCII slug. Falls back to a random token."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or secrets.token_hex(4)


def _bool_fields(fields: dict, names: tuple[str, ...]) -> dict:
    for name in names:
        if name in fields:
            fields[name] = 1 if fields[name] else 0
    return fields


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class MarketStore:
    """Repository for NFT, Collection, Auction, Bid, Transaction and SystemSetting."""

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        self.engine: Engine = make_engine(db_url)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # NFTs
    # ------------------------------------------------------------------

    def create_nft(self, nft: NFT) -> int:
        """Insert an NFT. token_id and contract_address are generated when blank."""
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _nfts.insert().values(
                    token_id=nft.token_id or f"{int(datetime.now(timezone.utc).timestamp())}-{uuid.uuid4().hex[:12]}",
                    contract_address=nft.contract_address or "0x" + secrets.token_hex(20),
                    name=nft.name,
                    description=nft.description,
                    image=nft.image,
                    price=nft.price,
                    category=nft.category,
                    creator_id=nft.creator_id,
                    owner_id=nft.owner_id,
                    collection_id=nft.collection_id,
                    is_listed=1 if nft.is_listed else 0,
                    is_sold=1 if nft.is_sold else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_nft(self, nft_id: int) -> Optional[NFT]:
        with self.engine.connect() as conn:
            row = conn.execute(_nfts.select().where(_nfts.c.id == nft_id)).fetchone()
        return _row_to_nft(row) if row is not None else None

    def get_nfts_by_ids(self, nft_ids: set[int]) -> dict[int, NFT]:
        if not nft_ids:
            return {}
        with self.engine.connect() as conn:
            rows = conn.execute(_nfts.select().where(_nfts.c.id.in_(nft_ids))).fetchall()
        return {r.id: _row_to_nft(r) for r in rows}

    def list_nfts(
        self,
        *,
        category: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        is_listed: Optional[bool] = None,
        creator_id: Optional[int] = None,
        owner_id: Optional[int] = None,
        collection_id: Optional[int] = None,
        query: Optional[str] = None,
        is_verified: Optional[bool] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[NFT], int]:
        """Return one page of NFTs plus the total matching the filters.

        is_verified filters on the creator's verified flag.
        """
        conditions = []
        if category:
            conditions.append(_nfts.c.category == category)
        if min_price is not None:
            conditions.append(_nfts.c.price >= min_price)
        if max_price is not None:
            conditions.append(_nfts.c.price <= max_price)
        if is_listed is not None:
            conditions.append(_nfts.c.is_listed == (1 if is_listed else 0))
        if creator_id is not None:
            conditions.append(_nfts.c.creator_id == creator_id)
        if owner_id is not None:
            conditions.append(_nfts.c.owner_id == owner_id)
        if collection_id is not None:
            conditions.append(_nfts.c.collection_id == collection_id)
        if query:
            pattern = like_pattern(query)
            conditions.append(
                or_(
                    func.lower(_nfts.c.name).like(pattern, escape=LIKE_ESCAPE),
                    func.lower(_nfts.c.description).like(pattern, escape=LIKE_ESCAPE),
                )
            )
        if is_verified is not None:
            verified_creators = select(_users.c.id).where(_users.c.is_verified == (1 if is_verified else 0))
            conditions.append(_nfts.c.creator_id.in_(verified_creators))

        order = _order(_NFT_SORT, sort_by, sort_order, _nfts.c.created_at)
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(_nfts).where(*conditions)).scalar() or 0
            rows = conn.execute(
                _nfts.select().where(*conditions).order_by(order, _nfts.c.id.desc()).offset(offset).limit(limit)
            ).fetchall()
        return [_row_to_nft(r) for r in rows], total

    def update_nft(self, nft_id: int, **fields) -> bool:
        _bool_fields(fields, ("is_listed", "is_sold"))
        fields["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_nfts.update().where(_nfts.c.id == nft_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_nft(self, nft_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_nfts.delete().where(_nfts.c.id == nft_id))
            conn.commit()
        return result.rowcount > 0

    def similar_nfts(self, nft: NFT, limit: int = 6) -> list[NFT]:
        """Other listed NFTs in the same category, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _nfts.select()
                .where((_nfts.c.category == nft.category) & (_nfts.c.id != nft.id) & (_nfts.c.is_listed == 1))
                .order_by(_nfts.c.created_at.desc(), _nfts.c.id.desc())
                .limit(limit)
            ).fetchall()
        return [_row_to_nft(r) for r in rows]

    def nfts_in_collection(self, collection_id: int, limit: Optional[int] = None) -> list[NFT]:
        query = (
            _nfts.select()
            .where(_nfts.c.collection_id == collection_id)
            .order_by(_nfts.c.created_at.desc(), _nfts.c.id.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_nft(r) for r in rows]

    def count_nfts(self, since: Optional[str] = None) -> int:
        query = select(func.count()).select_from(_nfts)
        if since:
            query = query.where(_nfts.c.created_at >= since)
        with self.engine.connect() as conn:
            return conn.execute(query).scalar() or 0

    def count_nfts_for_user(self, user_id: int) -> dict[str, int]:
        """Return {"created": N, "owned": N} for a user profile."""
        with self.engine.connect() as conn:
            created = (
                conn.execute(select(func.count()).select_from(_nfts).where(_nfts.c.creator_id == user_id)).scalar()
                or 0
            )
            owned = (
                conn.execute(select(func.count()).select_from(_nfts).where(_nfts.c.owner_id == user_id)).scalar()
                or 0
            )
        return {"created": created, "owned": owned}

    def recent_nfts(self, limit: int = 5) -> list[NFT]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _nfts.select().order_by(_nfts.c.created_at.desc(), _nfts.c.id.desc()).limit(limit)
            ).fetchall()
        return [_row_to_nft(r) for r in rows]

    def top_creators(self, limit: int = 5) -> list[dict]:
        """Creators ranked by number of NFTs minted, descending."""
        count = func.count(_nfts.c.id).label("nft_count")
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_nfts.c.creator_id, count)
                .group_by(_nfts.c.creator_id)
                .order_by(count.desc(), _nfts.c.creator_id)
                .limit(limit)
            ).fetchall()
        return [{"creator_id": r.creator_id, "nft_count": r.nft_count} for r in rows]

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def create_collection(self, collection: Collection) -> int:
        """Insert a collection.

        Raises sqlalchemy.exc.IntegrityError if the creator already has a
        collection with that name. Routes map that to 409.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _collections.insert().values(
                    name=collection.name,
                    slug=collection.slug or slugify(collection.name),
                    description=collection.description,
                    image=collection.image,
                    banner=collection.banner,
                    creator_id=collection.creator_id,
                    is_verified=1 if collection.is_verified else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_collection(self, collection_id: int) -> Optional[Collection]:
        with self.engine.connect() as conn:
            row = conn.execute(_collections.select().where(_collections.c.id == collection_id)).fetchone()
        return _row_to_collection(row) if row is not None else None

    def get_collections_by_ids(self, collection_ids: set[int]) -> dict[int, Collection]:
        if not collection_ids:
            return {}
        with self.engine.connect() as conn:
            rows = conn.execute(_collections.select().where(_collections.c.id.in_(collection_ids))).fetchall()
        return {r.id: _row_to_collection(r) for r in rows}

    def get_collection_by_name(self, creator_id: int, name: str) -> Optional[Collection]:
        with self.engine.connect() as conn:
            row = conn.execute(
                _collections.select().where((_collections.c.creator_id == creator_id) & (_collections.c.name == name))
            ).fetchone()
        return _row_to_collection(row) if row is not None else None

    def list_collections(
        self,
        *,
        creator_id: Optional[int] = None,
        query: Optional[str] = None,
        is_verified: Optional[bool] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Collection], int]:
        conditions = []
        if creator_id is not None:
            conditions.append(_collections.c.creator_id == creator_id)
        if query:
            pattern = like_pattern(query)
            conditions.append(
                or_(
                    func.lower(_collections.c.name).like(pattern, escape=LIKE_ESCAPE),
                    func.lower(_collections.c.description).like(pattern, escape=LIKE_ESCAPE),
                )
            )
        if is_verified is not None:
            conditions.append(_collections.c.is_verified == (1 if is_verified else 0))

        order = _order(_COLLECTION_SORT, sort_by, sort_order, _collections.c.created_at)
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(_collections).where(*conditions)).scalar() or 0
            rows = conn.execute(
                _collections.select()
                .where(*conditions)
                .order_by(order, _collections.c.id.desc())
                .offset(offset)
                .limit(limit)
            ).fetchall()
        return [_row_to_collection(r) for r in rows], total

    def collections_by_creator(self, creator_id: int) -> list[Collection]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _collections.select()
                .where(_collections.c.creator_id == creator_id)
                .order_by(_collections.c.created_at.desc())
            ).fetchall()
        return [_row_to_collection(r) for r in rows]

    def update_collection(self, collection_id: int, **fields) -> bool:
        _bool_fields(fields, ("is_verified",))
        if "name" in fields:
            fields["slug"] = slugify(fields["name"])
        fields["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_collections.update().where(_collections.c.id == collection_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_collection(self, collection_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_collections.delete().where(_collections.c.id == collection_id))
            conn.commit()
        return result.rowcount > 0

    def collection_price_stats(self, collection_ids: list[int]) -> dict[int, dict]:
        """Aggregate NFT prices per collection in one GROUP BY query.

        Returns {collection_id: {nft_count, floor_price, average_price,
        max_price, total_value}}; collections without NFTs get zeros.
        """
        empty = {"nft_count": 0, "floor_price": 0.0, "average_price": 0.0, "max_price": 0.0, "total_value": 0.0}
        stats = {cid: dict(empty) for cid in collection_ids}
        if not collection_ids:
            return stats
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(
                    _nfts.c.collection_id,
                    func.count(_nfts.c.id),
                    func.min(_nfts.c.price),
                    func.avg(_nfts.c.price),
                    func.max(_nfts.c.price),
                    func.sum(_nfts.c.price),
                )
                .where(_nfts.c.collection_id.in_(collection_ids))
                .group_by(_nfts.c.collection_id)
            ).fetchall()
        for cid, count, floor, avg, high, total in rows:
            stats[cid] = {
                "nft_count": count,
                "floor_price": float(floor or 0),
                "average_price": float(avg or 0),
                "max_price": float(high or 0),
                "total_value": float(total or 0),
            }
        return stats

    def collection_sales(self, collection_id: int) -> dict:
        """Sales count and volume for SALE transactions on this collection's NFTs."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(func.count(_transactions.c.id), func.sum(_transactions.c.amount))
                .select_from(_transactions.join(_nfts, _transactions.c.nft_id == _nfts.c.id))
                .where((_nfts.c.collection_id == collection_id) & (_transactions.c.type == "SALE"))
            ).fetchone()
        return {"total_sales": row[0] or 0, "volume": float(row[1] or 0)}

    def top_collections_by_volume(self, limit: int = 5) -> list[dict]:
        volume = func.sum(_transactions.c.amount).label("volume")
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_nfts.c.collection_id, volume)
                .select_from(_transactions.join(_nfts, _transactions.c.nft_id == _nfts.c.id))
                .where(_nfts.c.collection_id.is_not(None) & _transactions.c.type.in_(VOLUME_TYPES))
                .group_by(_nfts.c.collection_id)
                .order_by(volume.desc())
                .limit(limit)
            ).fetchall()
        return [{"collection_id": r.collection_id, "volume": float(r.volume or 0)} for r in rows]

    def count_collections(self, since: Optional[str] = None, creator_id: Optional[int] = None) -> int:
        query = select(func.count()).select_from(_collections)
        if since:
            query = query.where(_collections.c.created_at >= since)
        if creator_id is not None:
            query = query.where(_collections.c.creator_id == creator_id)
        with self.engine.connect() as conn:
            return conn.execute(query).scalar() or 0

    # ------------------------------------------------------------------
    # Auctions and bids
    # ------------------------------------------------------------------

    def create_auction(self, auction: Auction) -> int:
        """Insert an auction and unlist its NFT in one transaction."""
        now = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _auctions.insert().values(
                    nft_id=auction.nft_id,
                    starting_price=auction.starting_price,
                    reserve_price=auction.reserve_price,
                    current_price=auction.current_price,
                    start_time=auction.start_time,
                    end_time=auction.end_time,
                    is_active=1 if auction.is_active else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.execute(_nfts.update().where(_nfts.c.id == auction.nft_id).values(is_listed=0, updated_at=now))
            return result.inserted_primary_key[0]

    def get_auction(self, auction_id: int) -> Optional[Auction]:
        with self.engine.connect() as conn:
            row = conn.execute(_auctions.select().where(_auctions.c.id == auction_id)).fetchone()
        return _row_to_auction(row) if row is not None else None

    def active_auctions_for_nft(self, nft_id: int) -> list[Auction]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _auctions.select()
                .where((_auctions.c.nft_id == nft_id) & (_auctions.c.is_active == 1))
                .order_by(_auctions.c.end_time)
            ).fetchall()
        return [_row_to_auction(r) for r in rows]

    def list_auctions(
        self,
        *,
        is_active: Optional[bool] = None,
        creator_id: Optional[int] = None,
        category: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Auction], int]:
        """Return one page of auctions. creator_id and category filter on the auctioned NFT."""
        conditions = []
        if is_active is not None:
            conditions.append(_auctions.c.is_active == (1 if is_active else 0))
        if min_price is not None:
            conditions.append(_auctions.c.current_price >= min_price)
        if max_price is not None:
            conditions.append(_auctions.c.current_price <= max_price)
        if creator_id is not None or category:
            nft_filter = select(_nfts.c.id)
            if creator_id is not None:
                nft_filter = nft_filter.where(_nfts.c.creator_id == creator_id)
            if category:
                nft_filter = nft_filter.where(_nfts.c.category == category)
            conditions.append(_auctions.c.nft_id.in_(nft_filter))

        order = _order(_AUCTION_SORT, sort_by, sort_order, _auctions.c.created_at)
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(_auctions).where(*conditions)).scalar() or 0
            rows = conn.execute(
                _auctions.select()
                .where(*conditions)
                .order_by(order, _auctions.c.id.desc())
                .offset(offset)
                .limit(limit)
            ).fetchall()
        return [_row_to_auction(r) for r in rows], total

    def place_bid(self, auction_id: int, bidder_id: int, amount: float) -> Bid:
        """Record a bid and raise the auction's current price atomically.

        The UPDATE only matches while current_price is still below amount,
        so of two concurrent bids at the same price exactly one wins; the
        loser gets BidTooLow and its transaction rolls back.
        """
        now = _now_iso()
        with self.engine.begin() as conn:
            raised = conn.execute(
                _auctions.update()
                .where(
                    (_auctions.c.id == auction_id)
                    & (_auctions.c.is_active == 1)
                    & (_auctions.c.current_price < amount)
                )
                .values(current_price=amount, updated_at=now)
            )
            if raised.rowcount == 0:
                raise BidTooLow(f"Bid {amount} no longer exceeds the current price")
            result = conn.execute(
                _bids.insert().values(auction_id=auction_id, bidder_id=bidder_id, amount=amount, created_at=now)
            )
            bid_id = result.inserted_primary_key[0]
        return Bid(id=bid_id, auction_id=auction_id, bidder_id=bidder_id, amount=amount, created_at=now)

    def list_bids(self, auction_id: int, limit: Optional[int] = None) -> list[Bid]:
        """Bids for an auction, highest amount first."""
        query = _bids.select().where(_bids.c.auction_id == auction_id).order_by(_bids.c.amount.desc(), _bids.c.id)
        if limit is not None:
            query = query.limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_bid(r) for r in rows]

    def highest_bid(self, auction_id: int) -> Optional[Bid]:
        bids = self.list_bids(auction_id, limit=1)
        return bids[0] if bids else None

    def bid_counts(self, auction_ids: list[int]) -> dict[int, int]:
        if not auction_ids:
            return {}
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_bids.c.auction_id, func.count(_bids.c.id))
                .where(_bids.c.auction_id.in_(auction_ids))
                .group_by(_bids.c.auction_id)
            ).fetchall()
        counts = {aid: 0 for aid in auction_ids}
        counts.update({aid: count for aid, count in rows})
        return counts

    def count_active_auctions_for_owner(self, user_id: int) -> int:
        """Active auctions on NFTs the user owns. Blocks account deletion."""
        with self.engine.connect() as conn:
            return (
                conn.execute(
                    select(func.count())
                    .select_from(_auctions.join(_nfts, _auctions.c.nft_id == _nfts.c.id))
                    .where((_auctions.c.is_active == 1) & (_nfts.c.owner_id == user_id))
                ).scalar()
                or 0
            )

    def count_auctions(self, since: Optional[str] = None, active_only: bool = False) -> int:
        query = select(func.count()).select_from(_auctions)
        if since:
            query = query.where(_auctions.c.created_at >= since)
        if active_only:
            query = query.where(_auctions.c.is_active == 1)
        with self.engine.connect() as conn:
            return conn.execute(query).scalar() or 0

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def create_transaction(self, tx: Transaction) -> int:
        """Record a transaction and apply its listing side effects atomically.

        SALE and TRANSFER unlist the NFT; SALE also marks it sold.
        Raises sqlalchemy.exc.IntegrityError on a duplicate transaction_hash.
        """
        now = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _transactions.insert().values(
                    nft_id=tx.nft_id,
                    user_id=tx.user_id,
                    amount=tx.amount,
                    transaction_hash=tx.transaction_hash,
                    type=tx.type,
                    created_at=now,
                )
            )
            if tx.type in ("SALE", "TRANSFER"):
                values = {"is_listed": 0, "updated_at": now}
                if tx.type == "SALE":
                    values["is_sold"] = 1
                conn.execute(_nfts.update().where(_nfts.c.id == tx.nft_id).values(**values))
            return result.inserted_primary_key[0]

    def get_transaction(self, tx_id: int) -> Optional[Transaction]:
        with self.engine.connect() as conn:
            row = conn.execute(_transactions.select().where(_transactions.c.id == tx_id)).fetchone()
        return _row_to_transaction(row) if row is not None else None

    def list_transactions(
        self,
        *,
        user_id: Optional[int] = None,
        nft_id: Optional[int] = None,
        type: Optional[str] = None,
        min_amount: Optional[float] = None,
        max_amount: Optional[float] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Transaction], int]:
        conditions = []
        if user_id is not None:
            conditions.append(_transactions.c.user_id == user_id)
        if nft_id is not None:
            conditions.append(_transactions.c.nft_id == nft_id)
        if type:
            conditions.append(_transactions.c.type == type)
        if min_amount is not None:
            conditions.append(_transactions.c.amount >= min_amount)
        if max_amount is not None:
            conditions.append(_transactions.c.amount <= max_amount)

        order = _order(_TRANSACTION_SORT, sort_by, sort_order, _transactions.c.created_at)
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(_transactions).where(*conditions)).scalar() or 0
            rows = conn.execute(
                _transactions.select()
                .where(*conditions)
                .order_by(order, _transactions.c.id.desc())
                .offset(offset)
                .limit(limit)
            ).fetchall()
        return [_row_to_transaction(r) for r in rows], total

    def recent_transactions(self, limit: int = 5, nft_id: Optional[int] = None) -> list[Transaction]:
        query = _transactions.select()
        if nft_id is not None:
            query = query.where(_transactions.c.nft_id == nft_id)
        query = query.order_by(_transactions.c.created_at.desc(), _transactions.c.id.desc()).limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_transaction(r) for r in rows]

    def count_transactions(self, since: Optional[str] = None, user_id: Optional[int] = None) -> int:
        query = select(func.count()).select_from(_transactions)
        if since:
            query = query.where(_transactions.c.created_at >= since)
        if user_id is not None:
            query = query.where(_transactions.c.user_id == user_id)
        with self.engine.connect() as conn:
            return conn.execute(query).scalar() or 0

    def total_volume(self, since: Optional[str] = None, user_id: Optional[int] = None) -> float:
        """Sum of SALE and AUCTION amounts, optionally windowed and per user."""
        query = select(func.sum(_transactions.c.amount)).where(_transactions.c.type.in_(VOLUME_TYPES))
        if since:
            query = query.where(_transactions.c.created_at >= since)
        if user_id is not None:
            query = query.where(_transactions.c.user_id == user_id)
        with self.engine.connect() as conn:
            return float(conn.execute(query).scalar() or 0)

    # ------------------------------------------------------------------
    # System settings
    # ------------------------------------------------------------------

    def ensure_default_settings(self) -> int:
        """Seed DEFAULT_SETTINGS if the table is empty. Returns rows inserted."""
        with self.engine.begin() as conn:
            existing = conn.execute(select(func.count()).select_from(_settings)).scalar() or 0
            if existing:
                return 0
            now = _now_iso()
            conn.execute(
                _settings.insert(),
                [
                    {"key": s.key, "value": s.value, "type": s.type, "description": s.description, "updated_at": now}
                    for s in DEFAULT_SETTINGS
                ],
            )
        return len(DEFAULT_SETTINGS)

    def list_settings(self) -> list[SystemSetting]:
        with self.engine.connect() as conn:
            rows = conn.execute(_settings.select().order_by(_settings.c.key)).fetchall()
        return [_row_to_setting(r) for r in rows]

    def get_setting(self, key: str) -> Optional[SystemSetting]:
        with self.engine.connect() as conn:
            row = conn.execute(_settings.select().where(_settings.c.key == key)).fetchone()
        return _row_to_setting(row) if row is not None else None

    def create_setting(self, setting: SystemSetting) -> None:
        """Insert a setting. Raises IntegrityError if the key already exists."""
        with self.engine.connect() as conn:
            conn.execute(
                _settings.insert().values(
                    key=setting.key,
                    value=setting.value,
                    type=setting.type,
                    description=setting.description,
                    updated_at=_now_iso(),
                )
            )
            conn.commit()

    def update_setting(self, key: str, value: str, description: Optional[str] = None) -> bool:
        values = {"value": value, "updated_at": _now_iso()}
        if description is not None:
            values["description"] = description
        with self.engine.connect() as conn:
            result = conn.execute(_settings.update().where(_settings.c.key == key).values(**values))
            conn.commit()
        return result.rowcount > 0

    def delete_setting(self, key: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_settings.delete().where(_settings.c.key == key))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


def setting_value(setting: SystemSetting):
    """Decode a stored setting value according to its declared type."""
    if setting.type == "number":
        number = float(setting.value)
        return int(number) if number.is_integer() else number
    if setting.type == "boolean":
        return setting.value.strip().lower() in ("1", "true", "yes", "on")
    if setting.type == "json":
        return json.loads(setting.value)
    return setting.value


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_nft(row) -> NFT:
    return NFT(
        id=row.id,
        token_id=row.token_id,
        contract_address=row.contract_address,
        name=row.name,
        description=row.description,
        image=row.image,
        price=float(row.price),
        category=row.category,
        creator_id=row.creator_id,
        owner_id=row.owner_id,
        collection_id=row.collection_id,
        is_listed=bool(row.is_listed),
        is_sold=bool(row.is_sold),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_collection(row) -> Collection:
    return Collection(
        id=row.id,
        name=row.name,
        slug=row.slug,
        description=row.description,
        image=row.image,
        banner=row.banner,
        creator_id=row.creator_id,
        is_verified=bool(row.is_verified),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_auction(row) -> Auction:
    return Auction(
        id=row.id,
        nft_id=row.nft_id,
        starting_price=float(row.starting_price),
        reserve_price=float(row.reserve_price) if row.reserve_price is not None else None,
        current_price=float(row.current_price),
        start_time=row.start_time,
        end_time=row.end_time,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_bid(row) -> Bid:
    return Bid(
        id=row.id,
        auction_id=row.auction_id,
        bidder_id=row.bidder_id,
        amount=float(row.amount),
        created_at=row.created_at,
    )


def _row_to_transaction(row) -> Transaction:
    return Transaction(
        id=row.id,
        nft_id=row.nft_id,
        user_id=row.user_id,
        amount=float(row.amount),
        transaction_hash=row.transaction_hash,
        type=row.type,
        created_at=row.created_at,
    )


def _row_to_setting(row) -> SystemSetting:
    return SystemSetting(
        key=row.key,
        value=row.value,
        type=row.type,
        description=row.description,
        updated_at=row.updated_at,
    )
