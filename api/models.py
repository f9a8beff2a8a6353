"""
API request and response models for the Etheryte REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
market/models.py, which own the internal domain representation. Route
handlers map between the two via the from_domain() factories below.

Separation of concerns: domain dataclasses = storage truth; api/ models = API contract.
hashed_password never appears on any model in this module.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, HttpUrl, model_validator

from auth.models import User, UserSession
from market.models import NFT, Auction, Bid, Collection, SystemSetting, Transaction

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

USERNAME_PATTERN = r"^[a-zA-Z0-9_]+$"
WALLET_PATTERN = r"^0x[a-fA-F0-9]{40}$"
TX_HASH_PATTERN = r"^0x[a-fA-F0-9]{64}$"
SETTING_KEY_PATTERN = r"^[a-z0-9_]+(\.[a-z0-9_]+)*$"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    USER = "USER"
    MODERATOR = "MODERATOR"
    ADMIN = "ADMIN"


class CategoryEnum(str, Enum):
    Art = "Art"
    Music = "Music"
    Photography = "Photography"
    Gaming = "Gaming"
    Sports = "Sports"
    Collectibles = "Collectibles"
    Utility = "Utility"
    Other = "Other"


class TransactionTypeEnum(str, Enum):
    SALE = "SALE"
    MINT = "MINT"
    TRANSFER = "TRANSFER"
    AUCTION = "AUCTION"


class SettingTypeEnum(str, Enum):
    string = "string"
    number = "number"
    boolean = "boolean"
    json = "json"


class SortOrder(str, Enum):
    asc = "asc"
    desc = "desc"


class UserSortField(str, Enum):
    created_at = "created_at"
    username = "username"
    email = "email"
    last_login_at = "last_login_at"


class NFTSortField(str, Enum):
    created_at = "created_at"
    updated_at = "updated_at"
    price = "price"
    name = "name"


class CollectionSortField(str, Enum):
    created_at = "created_at"
    updated_at = "updated_at"
    name = "name"


class AuctionSortField(str, Enum):
    created_at = "created_at"
    end_time = "end_time"
    current_price = "current_price"


class TransactionSortField(str, Enum):
    created_at = "created_at"
    amount = "amount"


# ---------------------------------------------------------------------------
# Shared envelopes
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class PaginationMeta(BaseModel):
    """Pagination block attached to every list response."""

    model_config = ConfigDict(frozen=True)

    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "PaginationMeta":
        total_pages = (total + limit - 1) // limit if total else 0
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )


# ---------------------------------------------------------------------------
# Users -- response models
# ---------------------------------------------------------------------------


class UserSummary(BaseModel):
    """Public identity embedded in NFTs, bids, and collections."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar: Optional[str] = None
    is_verified: bool = False

    @classmethod
    def from_domain(cls, user: Optional[User]) -> Optional["UserSummary"]:
        if user is None:
            return None
        return cls(
            id=user.id,
            username=user.username,
            first_name=user.first_name,
            last_name=user.last_name,
            avatar=user.avatar,
            is_verified=user.is_verified,
        )


class UserResponse(BaseModel):
    """Full account view for the user themselves and for admins."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    username: str
    role: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar: Optional[str] = None
    bio: Optional[str] = None
    wallet_address: Optional[str] = None
    is_active: bool
    is_suspended: bool
    is_verified: bool
    two_factor_enabled: bool
    last_login_at: Optional[str] = None
    created_at: str
    updated_at: str

    @classmethod
    def from_domain(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            username=user.username,
            role=user.role,
            first_name=user.first_name,
            last_name=user.last_name,
            avatar=user.avatar,
            bio=user.bio,
            wallet_address=user.wallet_address,
            is_active=user.is_active,
            is_suspended=user.is_suspended,
            is_verified=user.is_verified,
            two_factor_enabled=user.two_factor_enabled,
            last_login_at=user.last_login_at,
            created_at=user.created_at or "",
            updated_at=user.updated_at or "",
        )


class PublicUserResponse(BaseModel):
    """Profile view for GET /api/users/{id}: no email, no flags beyond verification."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar: Optional[str] = None
    bio: Optional[str] = None
    wallet_address: Optional[str] = None
    is_verified: bool
    created_at: str

    @classmethod
    def from_domain(cls, user: User) -> "PublicUserResponse":
        return cls(
            id=user.id,
            username=user.username,
            first_name=user.first_name,
            last_name=user.last_name,
            avatar=user.avatar,
            bio=user.bio,
            wallet_address=user.wallet_address,
            is_verified=user.is_verified,
            created_at=user.created_at or "",
        )


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    username: str = Field(min_length=3, max_length=20, pattern=USERNAME_PATTERN)
    password: str = Field(min_length=6, max_length=128)
    first_name: Optional[str] = Field(
        default=None, min_length=2, max_length=50, validation_alias=AliasChoices("first_name", "firstName")
    )
    last_name: Optional[str] = Field(
        default=None, min_length=2, max_length=50, validation_alias=AliasChoices("last_name", "lastName")
    )
    wallet_address: Optional[str] = Field(
        default=None, pattern=WALLET_PATTERN, validation_alias=AliasChoices("wallet_address", "walletAddress")
    )
    bio: Optional[str] = Field(default=None, max_length=500)


class LoginRequest(BaseModel):
    """Request body for POST /api/auth/login.

    Accepts either {"email_or_username", "password", "remember_me"} or the
    older {"email", "password"} shape used by first-generation clients.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email_or_username: str = Field(
        min_length=1,
        max_length=255,
        validation_alias=AliasChoices("email_or_username", "emailOrUsername", "email", "username"),
    )
    password: str = Field(min_length=1, max_length=128)
    remember_me: bool = Field(default=False, validation_alias=AliasChoices("remember_me", "rememberMe"))


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class AuthResponse(BaseModel):
    """Response for login and registration. Tokens are also set as cookies."""

    model_config = ConfigDict(frozen=True)

    message: str
    user: UserResponse
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class RefreshResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: UserResponse


class SessionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    created_at: str
    last_activity_at: Optional[str] = None
    expires_at: str
    current: bool = False

    @classmethod
    def from_domain(cls, session: UserSession, current_id: Optional[str]) -> "SessionResponse":
        return cls(
            id=session.id,
            user_agent=session.user_agent,
            ip_address=session.ip_address,
            created_at=session.created_at or "",
            last_activity_at=session.last_activity_at,
            expires_at=session.expires_at,
            current=session.id == current_id,
        )


# ---------------------------------------------------------------------------
# Users -- request models
# ---------------------------------------------------------------------------


class UserUpdate(BaseModel):
    """Request body for PUT /api/users/{id}.

    role, is_active, is_suspended and is_verified are admin-only; the route
    rejects them with 403 for everyone else.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    bio: Optional[str] = Field(default=None, max_length=500)
    avatar: Optional[HttpUrl] = None
    wallet_address: Optional[str] = Field(default=None, pattern=WALLET_PATTERN)
    two_factor_enabled: Optional[bool] = None
    role: Optional[RoleEnum] = None
    is_active: Optional[bool] = None
    is_suspended: Optional[bool] = None
    is_verified: Optional[bool] = None


ADMIN_ONLY_USER_FIELDS = ("role", "is_active", "is_suspended", "is_verified")


class UserStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    nfts_created: int
    nfts_owned: int
    collections: int
    transactions: int
    total_volume: float


class UserListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    users: list[UserResponse]
    pagination: PaginationMeta
    stats: dict[str, dict[str, int]]


# ---------------------------------------------------------------------------
# NFTs
# ---------------------------------------------------------------------------


class NFTCreate(BaseModel):
    """Request body for POST /api/nfts."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    image: HttpUrl
    price: float = Field(gt=0)
    category: CategoryEnum
    collection_id: Optional[int] = Field(default=None, ge=1)


class NFTUpdate(BaseModel):
    """Request body for PUT /api/nfts/{id}. At least one field is required."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    price: Optional[float] = Field(default=None, gt=0)
    is_listed: Optional[bool] = None


class NFTResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    token_id: str
    contract_address: str
    name: str
    description: Optional[str] = None
    image: str
    price: float
    category: str
    creator_id: int
    owner_id: int
    collection_id: Optional[int] = None
    is_listed: bool
    is_sold: bool
    created_at: str
    updated_at: str
    creator: Optional[UserSummary] = None

    @classmethod
    def from_domain(cls, nft: NFT, creator: Optional[User] = None) -> "NFTResponse":
        return cls(
            id=nft.id,
            token_id=nft.token_id,
            contract_address=nft.contract_address,
            name=nft.name,
            description=nft.description,
            image=nft.image,
            price=nft.price,
            category=nft.category,
            creator_id=nft.creator_id,
            owner_id=nft.owner_id,
            collection_id=nft.collection_id,
            is_listed=nft.is_listed,
            is_sold=nft.is_sold,
            created_at=nft.created_at,
            updated_at=nft.updated_at,
            creator=UserSummary.from_domain(creator),
        )


class NFTListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    nfts: list[NFTResponse]
    pagination: PaginationMeta


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------


class CollectionCreate(BaseModel):
    """Request body for POST /api/collections."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    image: Optional[HttpUrl] = None
    banner: Optional[HttpUrl] = None


class CollectionUpdate(BaseModel):
    """Request body for PUT /api/collections/{id}. is_verified needs MODERATOR or above."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    image: Optional[HttpUrl] = None
    banner: Optional[HttpUrl] = None
    is_verified: Optional[bool] = None


class CollectionStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    nft_count: int = 0
    floor_price: float = 0.0
    average_price: float = 0.0
    max_price: float = 0.0
    total_value: float = 0.0
    total_sales: int = 0
    volume: float = 0.0


class CollectionSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    slug: str
    image: Optional[str] = None
    is_verified: bool

    @classmethod
    def from_domain(cls, collection: Optional[Collection]) -> Optional["CollectionSummary"]:
        if collection is None:
            return None
        return cls(
            id=collection.id,
            name=collection.name,
            slug=collection.slug,
            image=collection.image,
            is_verified=collection.is_verified,
        )


class CollectionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    slug: str
    description: Optional[str] = None
    image: Optional[str] = None
    banner: Optional[str] = None
    creator_id: int
    is_verified: bool
    created_at: str
    updated_at: str
    creator: Optional[UserSummary] = None
    nft_count: int = 0
    stats: CollectionStats = Field(default_factory=CollectionStats)
    preview_nfts: list[NFTResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(
        cls,
        collection: Collection,
        creator: Optional[User] = None,
        stats: Optional[dict] = None,
        preview: Optional[list[NFT]] = None,
    ) -> "CollectionResponse":
        stats = stats or {}
        return cls(
            id=collection.id,
            name=collection.name,
            slug=collection.slug,
            description=collection.description,
            image=collection.image,
            banner=collection.banner,
            creator_id=collection.creator_id,
            is_verified=collection.is_verified,
            created_at=collection.created_at,
            updated_at=collection.updated_at,
            creator=UserSummary.from_domain(creator),
            nft_count=stats.get("nft_count", 0),
            stats=CollectionStats(**stats),
            preview_nfts=[NFTResponse.from_domain(n) for n in preview or []],
        )


class CollectionListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    collections: list[CollectionResponse]
    pagination: PaginationMeta


class CollectionDetailResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    collection: CollectionResponse
    nfts: list[NFTResponse]


# ---------------------------------------------------------------------------
# Auctions and bids
# ---------------------------------------------------------------------------


class AuctionCreate(BaseModel):
    """Request body for POST /api/auctions."""

    nft_id: int = Field(ge=1)
    starting_price: float = Field(gt=0)
    reserve_price: Optional[float] = Field(default=None, gt=0)
    duration_hours: int = Field(ge=1, le=168)

    @model_validator(mode="after")
    def reserve_not_below_start(self) -> "AuctionCreate":
        if self.reserve_price is not None and self.reserve_price < self.starting_price:
            raise ValueError("reserve_price must be greater than or equal to starting_price")
        return self


class BidCreate(BaseModel):
    """Request body for POST /api/auctions/{id}/bids."""

    amount: float = Field(gt=0)


class BidResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    auction_id: int
    bidder_id: int
    amount: float
    created_at: str
    bidder: Optional[UserSummary] = None

    @classmethod
    def from_domain(cls, bid: Bid, bidder: Optional[User] = None) -> "BidResponse":
        return cls(
            id=bid.id,
            auction_id=bid.auction_id,
            bidder_id=bid.bidder_id,
            amount=bid.amount,
            created_at=bid.created_at,
            bidder=UserSummary.from_domain(bidder),
        )


class AuctionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    nft_id: int
    starting_price: float
    reserve_price: Optional[float] = None
    current_price: float
    start_time: str
    end_time: str
    is_active: bool
    created_at: str
    updated_at: str
    nft: Optional[NFTResponse] = None
    bids: list[BidResponse] = Field(default_factory=list)
    bid_count: int = 0

    @classmethod
    def from_domain(
        cls,
        auction: Auction,
        nft: Optional[NFTResponse] = None,
        bids: Optional[list[BidResponse]] = None,
        bid_count: int = 0,
    ) -> "AuctionResponse":
        return cls(
            id=auction.id,
            nft_id=auction.nft_id,
            starting_price=auction.starting_price,
            reserve_price=auction.reserve_price,
            current_price=auction.current_price,
            start_time=auction.start_time,
            end_time=auction.end_time,
            is_active=auction.is_active,
            created_at=auction.created_at,
            updated_at=auction.updated_at,
            nft=nft,
            bids=bids or [],
            bid_count=bid_count,
        )


class AuctionListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    auctions: list[AuctionResponse]
    pagination: PaginationMeta


class BidListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    auction: AuctionResponse
    bids: list[BidResponse]
    total_bids: int
    highest_bid: Optional[BidResponse] = None


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class TransactionCreate(BaseModel):
    """Request body for POST /api/transactions."""

    model_config = ConfigDict(str_strip_whitespace=True)

    nft_id: int = Field(ge=1)
    user_id: int = Field(ge=1)
    amount: float = Field(gt=0)
    transaction_hash: str = Field(pattern=TX_HASH_PATTERN)
    type: TransactionTypeEnum


class TransactionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    nft_id: int
    user_id: int
    amount: float
    transaction_hash: str
    type: str
    created_at: str
    user: Optional[UserSummary] = None
    nft_name: Optional[str] = None

    @classmethod
    def from_domain(
        cls, tx: Transaction, user: Optional[User] = None, nft: Optional[NFT] = None
    ) -> "TransactionResponse":
        return cls(
            id=tx.id,
            nft_id=tx.nft_id,
            user_id=tx.user_id,
            amount=tx.amount,
            transaction_hash=tx.transaction_hash,
            type=tx.type,
            created_at=tx.created_at,
            user=UserSummary.from_domain(user),
            nft_name=nft.name if nft else None,
        )


class TransactionListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    transactions: list[TransactionResponse]
    pagination: PaginationMeta


# ---------------------------------------------------------------------------
# Composite detail views
# ---------------------------------------------------------------------------


class NFTDetailResponse(BaseModel):
    """Response for GET /api/nfts/{id}."""

    model_config = ConfigDict(frozen=True)

    nft: NFTResponse
    collection: Optional[CollectionSummary] = None
    transactions: list[TransactionResponse]
    auctions: list[AuctionResponse]
    similar_nfts: list[NFTResponse]


class UserProfileResponse(BaseModel):
    """Response for GET /api/users/{id}."""

    model_config = ConfigDict(frozen=True)

    user: PublicUserResponse
    stats: UserStats
    recent_nfts: list[NFTResponse]
    collections: list[CollectionSummary]


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


class WindowCounts(BaseModel):
    """A metric over all time and three trailing windows."""

    model_config = ConfigDict(frozen=True)

    total: float
    today: float
    week: float
    month: float


class DashboardResponse(BaseModel):
    """Response for GET /api/admin/dashboard."""

    model_config = ConfigDict(frozen=True)

    overview: dict[str, WindowCounts]
    recent_activity: dict[str, list[dict[str, Any]]]
    top_performers: dict[str, list[dict[str, Any]]]
    system_health: dict[str, Any]


class SettingCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    key: str = Field(min_length=1, max_length=100, pattern=SETTING_KEY_PATTERN)
    value: str = Field(max_length=5000)
    type: SettingTypeEnum = SettingTypeEnum.string
    description: Optional[str] = Field(default=None, max_length=500)


class SettingUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    key: str = Field(min_length=1, max_length=100)
    value: str = Field(max_length=5000)
    description: Optional[str] = Field(default=None, max_length=500)


class SettingResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    value: str
    type: str
    description: Optional[str] = None
    updated_at: str

    @classmethod
    def from_domain(cls, setting: SystemSetting) -> "SettingResponse":
        return cls(
            key=setting.key,
            value=setting.value,
            type=setting.type,
            description=setting.description,
            updated_at=setting.updated_at,
        )


class SettingsListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    settings: list[SettingResponse]
    grouped: dict[str, dict[str, Any]]
