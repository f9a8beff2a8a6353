"""
api/routes/v1/nfts.py -- NFT listing routes.

Routes:
  GET    /api/nfts        -- paginated, filterable NFT list (public)
  POST   /api/nfts        -- mint a listing (auth)
  GET    /api/nfts/{id}   -- detail with collection, history, auctions, similar NFTs (public)
  PUT    /api/nfts/{id}   -- update (creator or ADMIN)
  DELETE /api/nfts/{id}   -- delete (creator or ADMIN); blocked by an active auction

Ownership:
  creator_id is the authority for edits. ADMIN passes every ownership check
  via the role hierarchy.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from api.errors import api_error, forbidden, not_found
from api.limiter import limiter
from api.models import (
    AuctionResponse,
    BidResponse,
    CategoryEnum,
    CollectionSummary,
    NFTCreate,
    NFTDetailResponse,
    NFTListResponse,
    NFTResponse,
    NFTSortField,
    NFTUpdate,
    PaginationMeta,
    TransactionResponse,
)
from api.pagination import PageParams, page_params
from auth.dependencies import get_current_user
from auth.models import User
from auth.roles import ADMIN, has_permission
from auth.store import UserStore
from market.models import NFT
from market.store import MarketStore

# Auth policy:
# - GET    /api/nfts, /api/nfts/{id}: public -- browsing the marketplace needs no account
# - POST   /api/nfts:                 requires auth (get_current_user)
# - PUT    /api/nfts/{id}:            requires auth + creator-or-ADMIN check
# - DELETE /api/nfts/{id}:            requires auth + creator-or-ADMIN check
router = APIRouter()


def can_manage(user: User, creator_id: int) -> bool:
    return user.id == creator_id or has_permission(user.role, ADMIN)


def nft_responses(user_store: UserStore, nfts: list[NFT]) -> list[NFTResponse]:
    """Map NFTs to responses with creator summaries, one batch user lookup."""
    creators = user_store.get_users_by_ids({n.creator_id for n in nfts})
    return [NFTResponse.from_domain(n, creators.get(n.creator_id)) for n in nfts]


@limiter.limit("120/minute")
@router.get("/nfts", response_model=NFTListResponse)
def list_nfts(
    request: Request,
    paging: PageParams = Depends(page_params),
    sort_by: NFTSortField = NFTSortField.created_at,
    category: Optional[CategoryEnum] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    is_listed: Optional[bool] = None,
    creator_id: Optional[int] = None,
    owner_id: Optional[int] = None,
    collection_id: Optional[int] = None,
    query: Optional[str] = Query(None, max_length=100),
    is_verified: Optional[bool] = None,
) -> NFTListResponse:
    """Return one page of NFTs.

    query matches name or description (case-insensitive substring).
    is_verified filters on the creator's verification badge.
    """
    if min_price is not None and max_price is not None and min_price > max_price:
        raise api_error(400, "invalid_param", "min_price must not exceed max_price.")

    market: MarketStore = request.app.state.market
    nfts, total = market.list_nfts(
        category=category.value if category else None,
        min_price=min_price,
        max_price=max_price,
        is_listed=is_listed,
        creator_id=creator_id,
        owner_id=owner_id,
        collection_id=collection_id,
        query=query,
        is_verified=is_verified,
        sort_by=sort_by.value,
        sort_order=paging.sort_order,
        offset=paging.offset,
        limit=paging.limit,
    )
    return NFTListResponse(
        nfts=nft_responses(request.app.state.user_store, nfts),
        pagination=PaginationMeta.build(paging.page, paging.limit, total),
    )


@limiter.limit("30/minute")
@router.post("/nfts", response_model=NFTResponse, status_code=201)
def create_nft(
    request: Request,
    body: NFTCreate,
    current_user: User = Depends(get_current_user),
) -> NFTResponse:
    """Create a listed NFT owned by the caller.

    A collection_id must name a collection the caller created.
    """
    market: MarketStore = request.app.state.market

    if body.collection_id is not None:
        collection = market.get_collection(body.collection_id)
        if collection is None:
            raise not_found("Collection")
        if collection.creator_id != current_user.id:
            raise forbidden("You can only add NFTs to your own collections.")

    nft_id = market.create_nft(
        NFT(
            name=body.name,
            description=body.description,
            image=str(body.image),
            price=body.price,
            category=body.category.value,
            creator_id=current_user.id,
            owner_id=current_user.id,
            collection_id=body.collection_id,
            is_listed=True,
        )
    )
    return NFTResponse.from_domain(market.get_nft(nft_id), current_user)


@router.get("/nfts/{nft_id}", response_model=NFTDetailResponse)
def get_nft(request: Request, nft_id: int) -> NFTDetailResponse:
    """NFT detail: collection, last 10 transactions, active auctions (top 5 bids), up to 6 similar NFTs."""
    market: MarketStore = request.app.state.market
    user_store: UserStore = request.app.state.user_store

    nft = market.get_nft(nft_id)
    if nft is None:
        raise not_found("NFT")

    transactions = market.recent_transactions(limit=10, nft_id=nft_id)
    auctions = market.active_auctions_for_nft(nft_id)
    bids_by_auction = {a.id: market.list_bids(a.id, limit=5) for a in auctions}
    counts = market.bid_counts([a.id for a in auctions])
    similar = market.similar_nfts(nft, limit=6)

    user_ids = {nft.creator_id} | {t.user_id for t in transactions} | {n.creator_id for n in similar}
    for bids in bids_by_auction.values():
        user_ids |= {b.bidder_id for b in bids}
    users = user_store.get_users_by_ids(user_ids)

    collection = market.get_collection(nft.collection_id) if nft.collection_id else None
    return NFTDetailResponse(
        nft=NFTResponse.from_domain(nft, users.get(nft.creator_id)),
        collection=CollectionSummary.from_domain(collection),
        transactions=[TransactionResponse.from_domain(t, users.get(t.user_id), nft) for t in transactions],
        auctions=[
            AuctionResponse.from_domain(
                a,
                bids=[BidResponse.from_domain(b, users.get(b.bidder_id)) for b in bids_by_auction[a.id]],
                bid_count=counts.get(a.id, 0),
            )
            for a in auctions
        ],
        similar_nfts=[NFTResponse.from_domain(n, users.get(n.creator_id)) for n in similar],
    )


@router.put("/nfts/{nft_id}", response_model=NFTResponse)
def update_nft(
    request: Request,
    nft_id: int,
    body: NFTUpdate,
    current_user: User = Depends(get_current_user),
) -> NFTResponse:
    """Update name, description, price, or listing state. Creator or ADMIN only."""
    market: MarketStore = request.app.state.market

    nft = market.get_nft(nft_id)
    if nft is None:
        raise not_found("NFT")
    if not can_manage(current_user, nft.creator_id):
        raise forbidden("You can only update your own NFTs.")

    updates = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None or k == "description"}
    if not updates:
        raise api_error(400, "no_changes", "No fields to update.")

    market.update_nft(nft_id, **updates)
    updated = market.get_nft(nft_id)
    creator = request.app.state.user_store.get_by_id(updated.creator_id)
    return NFTResponse.from_domain(updated, creator)


@router.delete("/nfts/{nft_id}", status_code=204)
def delete_nft(
    request: Request,
    nft_id: int,
    current_user: User = Depends(get_current_user),
) -> Response:
    """Delete an NFT. Creator or ADMIN only; refused while an auction is running."""
    market: MarketStore = request.app.state.market

    nft = market.get_nft(nft_id)
    if nft is None:
        raise not_found("NFT")
    if not can_manage(current_user, nft.creator_id):
        raise forbidden("You can only delete your own NFTs.")
    if market.active_auctions_for_nft(nft_id):
        raise api_error(400, "active_auction", "Cannot delete an NFT with an active auction.")

    market.delete_nft(nft_id)
    return Response(status_code=204)
