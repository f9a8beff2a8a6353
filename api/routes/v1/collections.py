"""
api/routes/v1/collections.py -- Collection routes.

Routes:
  GET    /api/collections        -- paginated list with NFT counts, price stats, previews (public)
  POST   /api/collections        -- create (auth)
  GET    /api/collections/{id}   -- detail with NFTs and sales stats (public)
  PUT    /api/collections/{id}   -- update (creator or ADMIN); is_verified needs MODERATOR+
  DELETE /api/collections/{id}   -- delete (creator or ADMIN); must be empty

Collection names are unique per creator. The pre-check gives a friendly
409; the UNIQUE(creator_id, name) constraint backs it up under races.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.exc import IntegrityError

from api.errors import api_error, forbidden, not_found
from api.limiter import limiter
from api.models import (
    CollectionCreate,
    CollectionDetailResponse,
    CollectionListResponse,
    CollectionResponse,
    CollectionSortField,
    CollectionUpdate,
    PaginationMeta,
)
from api.pagination import PageParams, page_params
from api.routes.v1.nfts import can_manage, nft_responses
from auth.dependencies import get_current_user
from auth.models import User
from auth.roles import MODERATOR, has_permission
from auth.store import UserStore
from market.models import Collection
from market.store import MarketStore, slugify

# Auth policy:
# - GET    /api/collections, /api/collections/{id}: public
# - POST   /api/collections:        requires auth (get_current_user)
# - PUT    /api/collections/{id}:   requires auth + creator-or-ADMIN; is_verified requires MODERATOR+
# - DELETE /api/collections/{id}:   requires auth + creator-or-ADMIN
router = APIRouter()

_PREVIEW_SIZE = 4


def _conflict() -> Exception:
    return api_error(409, "conflict", "You already have a collection with this name.")


@limiter.limit("120/minute")
@router.get("/collections", response_model=CollectionListResponse)
def list_collections(
    request: Request,
    paging: PageParams = Depends(page_params),
    sort_by: CollectionSortField = CollectionSortField.created_at,
    creator_id: Optional[int] = None,
    query: Optional[str] = Query(None, max_length=100),
    is_verified: Optional[bool] = None,
) -> CollectionListResponse:
    """Return one page of collections with aggregated price stats and preview NFTs."""
    market: MarketStore = request.app.state.market
    user_store: UserStore = request.app.state.user_store

    collections, total = market.list_collections(
        creator_id=creator_id,
        query=query,
        is_verified=is_verified,
        sort_by=sort_by.value,
        sort_order=paging.sort_order,
        offset=paging.offset,
        limit=paging.limit,
    )
    # One GROUP BY for every collection on the page instead of one query each.
    stats = market.collection_price_stats([c.id for c in collections])
    creators = user_store.get_users_by_ids({c.creator_id for c in collections})
    return CollectionListResponse(
        collections=[
            CollectionResponse.from_domain(
                c,
                creators.get(c.creator_id),
                stats.get(c.id),
                market.nfts_in_collection(c.id, limit=_PREVIEW_SIZE),
            )
            for c in collections
        ],
        pagination=PaginationMeta.build(paging.page, paging.limit, total),
    )


@limiter.limit("30/minute")
@router.post("/collections", response_model=CollectionResponse, status_code=201)
def create_collection(
    request: Request,
    body: CollectionCreate,
    current_user: User = Depends(get_current_user),
) -> CollectionResponse:
    """Create a collection owned by the caller. Duplicate names per creator return 409."""
    market: MarketStore = request.app.state.market

    if market.get_collection_by_name(current_user.id, body.name) is not None:
        raise _conflict()
    try:
        collection_id = market.create_collection(
            Collection(
                name=body.name,
                slug=slugify(body.name),
                description=body.description,
                image=str(body.image) if body.image else None,
                banner=str(body.banner) if body.banner else None,
                creator_id=current_user.id,
            )
        )
    except IntegrityError as exc:
        raise _conflict() from exc

    created = market.get_collection(collection_id)
    return CollectionResponse.from_domain(created, current_user, market.collection_price_stats([collection_id])[collection_id])


@router.get("/collections/{collection_id}", response_model=CollectionDetailResponse)
def get_collection(request: Request, collection_id: int) -> CollectionDetailResponse:
    """Collection detail: every NFT plus price and sales statistics."""
    market: MarketStore = request.app.state.market
    user_store: UserStore = request.app.state.user_store

    collection = market.get_collection(collection_id)
    if collection is None:
        raise not_found("Collection")

    stats = market.collection_price_stats([collection_id])[collection_id]
    stats.update(market.collection_sales(collection_id))
    nfts = market.nfts_in_collection(collection_id)
    return CollectionDetailResponse(
        collection=CollectionResponse.from_domain(
            collection,
            user_store.get_by_id(collection.creator_id),
            stats,
            nfts[:_PREVIEW_SIZE],
        ),
        nfts=nft_responses(user_store, nfts),
    )


@router.put("/collections/{collection_id}", response_model=CollectionResponse)
def update_collection(
    request: Request,
    collection_id: int,
    body: CollectionUpdate,
    current_user: User = Depends(get_current_user),
) -> CollectionResponse:
    """Update a collection.

    The creator and ADMINs may edit. Changing is_verified additionally needs
    MODERATOR or above, so a creator cannot verify their own collection.
    """
    market: MarketStore = request.app.state.market

    collection = market.get_collection(collection_id)
    if collection is None:
        raise not_found("Collection")

    updates = body.model_dump(exclude_unset=True)
    if not can_manage(current_user, collection.creator_id):
        raise forbidden("You can only update your own collections.")
    if "is_verified" in updates and not has_permission(current_user.role, MODERATOR):
        raise forbidden("Only moderators can verify collections.")

    if updates.get("is_verified") is None:
        updates.pop("is_verified", None)
    if updates.get("name") is None:
        updates.pop("name", None)
    for field in ("image", "banner"):
        if updates.get(field) is not None:
            updates[field] = str(updates[field])
    if not updates:
        raise api_error(400, "no_changes", "No fields to update.")

    if "name" in updates and updates["name"] != collection.name:
        existing = market.get_collection_by_name(collection.creator_id, updates["name"])
        if existing is not None and existing.id != collection_id:
            raise _conflict()
    try:
        market.update_collection(collection_id, **updates)
    except IntegrityError as exc:
        raise _conflict() from exc

    updated = market.get_collection(collection_id)
    return CollectionResponse.from_domain(
        updated,
        request.app.state.user_store.get_by_id(updated.creator_id),
        market.collection_price_stats([collection_id])[collection_id],
    )


@router.delete("/collections/{collection_id}", status_code=204)
def delete_collection(
    request: Request,
    collection_id: int,
    current_user: User = Depends(get_current_user),
) -> Response:
    """Delete an empty collection. Creator or ADMIN only."""
    market: MarketStore = request.app.state.market

    collection = market.get_collection(collection_id)
    if collection is None:
        raise not_found("Collection")
    if not can_manage(current_user, collection.creator_id):
        raise forbidden("You can only delete your own collections.")
    if market.nfts_in_collection(collection_id, limit=1):
        raise api_error(400, "collection_not_empty", "Cannot delete a collection that still contains NFTs.")

    market.delete_collection(collection_id)
    return Response(status_code=204)
