"""
market/models.py -- Domain dataclasses for the Etheryte marketplace.

These are pure data containers with zero logic. Business rules (ownership,
bid validation, aggregates) live in market/store.py and the route layer.

Money is carried as float. Prices are display/settlement amounts in ETH
and are never used for on-chain arithmetic here.

id is None before the record is written to the database. Timestamps are
ISO 8601 UTC strings set by the store.
"""

from dataclasses import dataclass
from typing import Optional

NFT_CATEGORIES = ("Art", "Music", "Photography", "Gaming", "Sports", "Collectibles", "Utility", "Other")
TRANSACTION_TYPES = ("SALE", "MINT", "TRANSFER", "AUCTION")
SETTING_TYPES = ("string", "number", "boolean", "json")


@dataclass
class NFT:
    """A listed token.

    creator_id never changes; owner_id starts equal to creator_id.
    token_id and contract_address are generated by the store on insert.
    """

    name: str
    image: str
    price: float
    category: str
    creator_id: int
    owner_id: int
    id: Optional[int] = None
    token_id: str = ""
    contract_address: str = ""
    description: Optional[str] = None
    collection_id: Optional[int] = None
    is_listed: bool = True
    is_sold: bool = False
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Collection:
    """A creator-owned grouping of NFTs. (creator_id, name) is unique."""

    name: str
    slug: str
    creator_id: int
    id: Optional[int] = None
    description: Optional[str] = None
    image: Optional[str] = None
    banner: Optional[str] = None
    is_verified: bool = False
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Auction:
    """A timed English auction for one NFT.

    current_price starts at starting_price and only ever rises with bids.
    """

    nft_id: int
    starting_price: float
    current_price: float
    start_time: str
    end_time: str
    id: Optional[int] = None
    reserve_price: Optional[float] = None
    is_active: bool = True
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Bid:
    auction_id: int
    bidder_id: int
    amount: float
    id: Optional[int] = None
    created_at: str = ""


@dataclass
class Transaction:
    """A recorded on-chain event for an NFT. transaction_hash is unique."""

    nft_id: int
    user_id: int
    amount: float
    transaction_hash: str
    type: str  # "SALE" | "MINT" | "TRANSFER" | "AUCTION"
    id: Optional[int] = None
    created_at: str = ""


@dataclass
class SystemSetting:
    """Admin-editable key/value setting. value is always stored as text."""

    key: str
    value: str
    type: str = "string"  # "string" | "number" | "boolean" | "json"
    description: Optional[str] = None
    updated_at: str = ""
