"""
api/routes/v1/users.py -- User directory, profile, and account management.

Routes:
  GET    /api/users        -- paginated user list with stats (ADMIN)
  GET    /api/users/{id}   -- public profile with stats, recent NFTs, collections
  PUT    /api/users/{id}   -- update profile (self) or account flags (ADMIN)
  DELETE /api/users/{id}   -- delete account (self or ADMIN)

Security:
  [M4] PUT/DELETE keep at least one active ADMIN: an admin cannot deactivate,
       suspend, or demote themselves, and the last active admin cannot be
       demoted, deactivated, or deleted.
  role, is_active, is_suspended and is_verified are admin-only fields.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from api.errors import api_error, forbidden, not_found
from api.limiter import limiter
from api.models import (
    ADMIN_ONLY_USER_FIELDS,
    CollectionSummary,
    NFTResponse,
    PaginationMeta,
    PublicUserResponse,
    RoleEnum,
    UserListResponse,
    UserProfileResponse,
    UserResponse,
    UserSortField,
    UserStats,
    UserUpdate,
)
from api.pagination import PageParams, page_params
from auth.dependencies import get_current_user, require_admin
from auth.models import User
from auth.roles import ADMIN, has_permission
from auth.store import UserStore
from market.store import MarketStore

# Auth policy:
# - GET    /api/users:       requires ADMIN (require_admin)
# - GET    /api/users/{id}:  public -- profiles are visible to everyone
# - PUT    /api/users/{id}:  requires auth; self or ADMIN
# - DELETE /api/users/{id}:  requires auth; self or ADMIN
router = APIRouter()


@limiter.limit("60/minute")
@router.get("/users", response_model=UserListResponse)
def list_users(
    request: Request,
    paging: PageParams = Depends(page_params),
    sort_by: UserSortField = UserSortField.created_at,
    search: Optional[str] = Query(None, max_length=100),
    role: Optional[RoleEnum] = None,
    is_verified: Optional[bool] = None,
    current_user: User = Depends(require_admin),
) -> UserListResponse:
    """Return one page of users plus role and verification breakdowns."""
    user_store: UserStore = request.app.state.user_store
    users, total = user_store.list_users(
        search=search,
        role=role.value if role else None,
        is_verified=is_verified,
        sort_by=sort_by.value,
        sort_order=paging.sort_order,
        offset=paging.offset,
        limit=paging.limit,
    )
    return UserListResponse(
        users=[UserResponse.from_domain(u) for u in users],
        pagination=PaginationMeta.build(paging.page, paging.limit, total),
        stats={
            "by_role": user_store.count_by_role(),
            "by_verification": user_store.count_by_verified(),
        },
    )


@router.get("/users/{user_id}", response_model=UserProfileResponse)
def get_user(request: Request, user_id: int) -> UserProfileResponse:
    """Public profile: identity, activity stats, recent listed NFTs, collections."""
    user_store: UserStore = request.app.state.user_store
    market: MarketStore = request.app.state.market

    user = user_store.get_by_id(user_id)
    if user is None:
        raise not_found("User")

    nft_counts = market.count_nfts_for_user(user_id)
    recent, _ = market.list_nfts(creator_id=user_id, is_listed=True, limit=6)
    collections = market.collections_by_creator(user_id)

    return UserProfileResponse(
        user=PublicUserResponse.from_domain(user),
        stats=UserStats(
            nfts_created=nft_counts["created"],
            nfts_owned=nft_counts["owned"],
            collections=len(collections),
            transactions=market.count_transactions(user_id=user_id),
            total_volume=market.total_volume(user_id=user_id),
        ),
        recent_nfts=[NFTResponse.from_domain(n) for n in recent],
        collections=[CollectionSummary.from_domain(c) for c in collections],
    )


@router.put("/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: int,
    body: UserUpdate,
    current_user: User = Depends(get_current_user),
) -> UserResponse:
    """Update a user. Only the user themselves or an ADMIN may call this."""
    user_store: UserStore = request.app.state.user_store
    is_admin = has_permission(current_user.role, ADMIN)

    if current_user.id != user_id and not is_admin:
        raise forbidden("You can only update your own profile.")

    target = user_store.get_by_id(user_id)
    if target is None:
        raise not_found("User")

    updates = body.model_dump(exclude_unset=True)
    if not updates:
        raise api_error(400, "no_changes", "No fields to update.")

    if not is_admin and any(field in updates for field in ADMIN_ONLY_USER_FIELDS):
        raise forbidden("Only administrators can change role or account status.")

    # Explicit nulls are meaningless for non-nullable flags.
    for field in ("two_factor_enabled", *ADMIN_ONLY_USER_FIELDS):
        if field in updates and updates[field] is None:
            del updates[field]
    if not updates:
        raise api_error(400, "no_changes", "No fields to update.")

    if updates.get("avatar") is not None:
        updates["avatar"] = str(updates["avatar"])
    if "role" in updates:
        updates["role"] = RoleEnum(updates["role"]).value

    # [M4] Self-lockout and last-admin guards
    loses_admin = target.role == ADMIN and (
        updates.get("is_active") is False
        or updates.get("is_suspended") is True
        or updates.get("role", ADMIN) != ADMIN
    )
    if loses_admin:
        if target.id == current_user.id:
            raise api_error(400, "self_lockout", "You cannot deactivate, suspend, or demote your own account.")
        if target.is_active and user_store.count_active_admins() <= 1:
            raise api_error(400, "last_admin", "Cannot remove the last active admin account.")

    user_store.update_user(user_id, **updates)
    if updates.get("is_active") is False or updates.get("is_suspended") is True:
        user_store.delete_user_sessions(user_id)
    return UserResponse.from_domain(user_store.get_by_id(user_id))


@router.delete("/users/{user_id}", status_code=204)
def delete_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(get_current_user),
) -> Response:
    """Delete an account and everything it owns. Blocked while it has active auctions."""
    user_store: UserStore = request.app.state.user_store
    market: MarketStore = request.app.state.market

    if current_user.id != user_id and not has_permission(current_user.role, ADMIN):
        raise forbidden("You can only delete your own account.")

    target = user_store.get_by_id(user_id)
    if target is None:
        raise not_found("User")

    if market.count_active_auctions_for_owner(user_id) > 0:
        raise api_error(400, "active_auctions", "Cannot delete a user with active auctions.")
    if target.role == ADMIN and target.is_active and user_store.count_active_admins() <= 1:
        raise api_error(400, "last_admin", "Cannot delete the last active admin account.")

    user_store.delete_user(user_id)
    return Response(status_code=204)
