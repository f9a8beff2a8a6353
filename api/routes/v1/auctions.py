"""
api/routes/v1/auctions.py -- Timed auctions and bidding.

Routes:
  GET  /api/auctions             -- paginated auction list with NFT and top bids (public)
  POST /api/auctions             -- start an auction on an owned NFT (auth)
  GET  /api/auctions/{id}/bids   -- bid history, highest first (public)
  POST /api/auctions/{id}/bids   -- place a bid (auth)

Bidding:
  The route rejects obviously bad bids with a clear message. The store's
  place_bid() then re-checks amount > current_price inside the write
  transaction, so two racing bids at the same price cannot both win.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.errors import api_error, forbidden, not_found
from api.limiter import limiter
from api.models import (
    AuctionCreate,
    AuctionListResponse,
    AuctionResponse,
    AuctionSortField,
    BidCreate,
    BidListResponse,
    BidResponse,
    CategoryEnum,
    NFTResponse,
    PaginationMeta,
)
from api.pagination import PageParams, page_params
from auth.dependencies import get_current_user
from auth.models import User
from auth.store import UserStore
from market import notifications
from market.models import Auction
from market.store import BidTooLow, MarketStore

logger = logging.getLogger("etheryte.auctions")

# Auth policy:
# - GET  /api/auctions, /api/auctions/{id}/bids: public
# - POST /api/auctions:            requires auth + NFT ownership (owner_id)
# - POST /api/auctions/{id}/bids:  requires auth; creator/owner cannot bid
router = APIRouter()

_TOP_BIDS = 5


def _has_ended(auction: Auction, now: datetime) -> bool:
    return datetime.fromisoformat(auction.end_time) <= now


@limiter.limit("120/minute")
@router.get("/auctions", response_model=AuctionListResponse)
def list_auctions(
    request: Request,
    paging: PageParams = Depends(page_params),
    sort_by: AuctionSortField = AuctionSortField.created_at,
    is_active: Optional[bool] = None,
    creator_id: Optional[int] = None,
    category: Optional[CategoryEnum] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
) -> AuctionListResponse:
    """Return one page of auctions. Price filters apply to current_price."""
    if min_price is not None and max_price is not None and min_price > max_price:
        raise api_error(400, "invalid_param", "min_price must not exceed max_price.")

    market: MarketStore = request.app.state.market
    user_store: UserStore = request.app.state.user_store

    auctions, total = market.list_auctions(
        is_active=is_active,
        creator_id=creator_id,
        category=category.value if category else None,
        min_price=min_price,
        max_price=max_price,
        sort_by=sort_by.value,
        sort_order=paging.sort_order,
        offset=paging.offset,
        limit=paging.limit,
    )
    nfts = market.get_nfts_by_ids({a.nft_id for a in auctions})
    bids_by_auction = {a.id: market.list_bids(a.id, limit=_TOP_BIDS) for a in auctions}
    counts = market.bid_counts([a.id for a in auctions])

    user_ids = {n.creator_id for n in nfts.values()}
    for bids in bids_by_auction.values():
        user_ids |= {b.bidder_id for b in bids}
    users = user_store.get_users_by_ids(user_ids)

    items = []
    for a in auctions:
        nft = nfts.get(a.nft_id)
        items.append(
            AuctionResponse.from_domain(
                a,
                nft=NFTResponse.from_domain(nft, users.get(nft.creator_id)) if nft else None,
                bids=[BidResponse.from_domain(b, users.get(b.bidder_id)) for b in bids_by_auction[a.id]],
                bid_count=counts.get(a.id, 0),
            )
        )
    return AuctionListResponse(
        auctions=items,
        pagination=PaginationMeta.build(paging.page, paging.limit, total),
    )


@limiter.limit("30/minute")
@router.post("/auctions", response_model=AuctionResponse, status_code=201)
def create_auction(
    request: Request,
    body: AuctionCreate,
    current_user: User = Depends(get_current_user),
) -> AuctionResponse:
    """Start an auction. The NFT is unlisted for the auction's duration."""
    market: MarketStore = request.app.state.market

    nft = market.get_nft(body.nft_id)
    if nft is None:
        raise not_found("NFT")
    if nft.owner_id != current_user.id:
        raise forbidden("You can only auction NFTs you own.")
    if market.active_auctions_for_nft(nft.id):
        raise api_error(409, "conflict", "This NFT already has an active auction.")

    start = datetime.now(timezone.utc)
    auction_id = market.create_auction(
        Auction(
            nft_id=nft.id,
            starting_price=body.starting_price,
            reserve_price=body.reserve_price,
            current_price=body.starting_price,
            start_time=start.isoformat(),
            end_time=(start + timedelta(hours=body.duration_hours)).isoformat(),
        )
    )
    logger.info("Auction %s started on nft_id=%s by user_id=%s", auction_id, nft.id, current_user.id)
    creator = request.app.state.user_store.get_by_id(nft.creator_id)
    return AuctionResponse.from_domain(
        market.get_auction(auction_id),
        nft=NFTResponse.from_domain(market.get_nft(nft.id), creator),
    )


@router.get("/auctions/{auction_id}/bids", response_model=BidListResponse)
def list_bids(request: Request, auction_id: int) -> BidListResponse:
    market: MarketStore = request.app.state.market
    user_store: UserStore = request.app.state.user_store

    auction = market.get_auction(auction_id)
    if auction is None:
        raise not_found("Auction")

    bids = market.list_bids(auction_id)
    bidders = user_store.get_users_by_ids({b.bidder_id for b in bids})
    responses = [BidResponse.from_domain(b, bidders.get(b.bidder_id)) for b in bids]
    return BidListResponse(
        auction=AuctionResponse.from_domain(auction, bid_count=len(bids)),
        bids=responses,
        total_bids=len(responses),
        highest_bid=responses[0] if responses else None,
    )


@limiter.limit("60/minute")
@router.post("/auctions/{auction_id}/bids", response_model=BidResponse, status_code=201)
def place_bid(
    request: Request,
    auction_id: int,
    body: BidCreate,
    current_user: User = Depends(get_current_user),
) -> BidResponse:
    """Place a bid that must exceed the current price.

    The NFT's creator and owner cannot bid, and neither can the current
    high bidder. The creator and the outbid user are e-mailed.
    """
    market: MarketStore = request.app.state.market
    user_store: UserStore = request.app.state.user_store

    auction = market.get_auction(auction_id)
    if auction is None:
        raise not_found("Auction")
    if not auction.is_active:
        raise api_error(400, "auction_inactive", "This auction is not active.")
    if _has_ended(auction, datetime.now(timezone.utc)):
        raise api_error(400, "auction_ended", "This auction has ended.")

    nft = market.get_nft(auction.nft_id)
    if nft is not None and current_user.id in (nft.creator_id, nft.owner_id):
        raise api_error(400, "own_nft", "You cannot bid on your own NFT.")
    if body.amount <= auction.current_price:
        raise api_error(400, "bid_too_low", f"Bid must be higher than the current price of {auction.current_price}.")

    previous = market.highest_bid(auction_id)
    if previous is not None and previous.bidder_id == current_user.id:
        raise api_error(400, "already_highest", "You already hold the highest bid.")

    try:
        bid = market.place_bid(auction_id, current_user.id, body.amount)
    except BidTooLow as exc:
        raise api_error(400, "bid_too_low", "Another bid raised the price first. Please bid higher.") from exc

    logger.info("Bid %s on auction %s: %.4f by user_id=%s", bid.id, auction_id, bid.amount, current_user.id)

    if nft is not None:
        creator = user_store.get_by_id(nft.creator_id)
        if creator is not None:
            notifications.send_new_bid(creator.email, nft.name, bid.amount, current_user.username, auction_id)
        if previous is not None:
            outbid = user_store.get_by_id(previous.bidder_id)
            if outbid is not None:
                notifications.send_outbid(outbid.email, nft.name, previous.amount, bid.amount, auction_id)

    return BidResponse.from_domain(bid, current_user)
