"""
api/routes/v1/admin.py -- Admin dashboard and system settings.

Routes:
  GET    /api/admin/dashboard         -- platform metrics, recent activity, top performers
  GET    /api/admin/settings          -- all settings, flat and grouped by key prefix
  POST   /api/admin/settings          -- create a setting
  PUT    /api/admin/settings          -- update a setting's value/description
  DELETE /api/admin/settings?key=...  -- delete a setting

Every route depends on require_admin: 401 without a session, 403 below ADMIN.

Windows:
  today = since 00:00 UTC, week = trailing 7 days, month = trailing 30 days.
  Timestamps are ISO 8601 UTC strings, so >= comparison on text is chronological.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Request, Response

from api.errors import api_error, not_found
from api.limiter import limiter
from api.models import (
    CollectionSummary,
    DashboardResponse,
    NFTResponse,
    SettingCreate,
    SettingResponse,
    SettingsListResponse,
    SettingUpdate,
    TransactionResponse,
    UserSummary,
    WindowCounts,
)
from auth.dependencies import require_admin
from auth.models import User
from auth.store import UserStore
from market.models import SystemSetting
from market.store import MarketStore, setting_value

logger = logging.getLogger("etheryte.admin")

# Auth policy:
# - All routes: require_admin (ADMIN role; 401 unauthenticated, 403 otherwise)
router = APIRouter()

_RECENT = 5


def _window_starts(now: datetime) -> dict[str, str]:
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return {
        "today": midnight.isoformat(),
        "week": (now - timedelta(days=7)).isoformat(),
        "month": (now - timedelta(days=30)).isoformat(),
    }


def _windowed(counter: Callable[[Optional[str]], float], starts: dict[str, str]) -> WindowCounts:
    return WindowCounts(
        total=counter(None),
        today=counter(starts["today"]),
        week=counter(starts["week"]),
        month=counter(starts["month"]),
    )


def _check_value(value: str, value_type: str) -> None:
    try:
        setting_value(SystemSetting(key="", value=value, type=value_type))
    except (ValueError, json.JSONDecodeError) as exc:
        raise api_error(400, "invalid_value", f"Value is not a valid {value_type}.") from exc


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


@limiter.limit("30/minute")
@router.get("/admin/dashboard", response_model=DashboardResponse)
def dashboard(request: Request, current_user: User = Depends(require_admin)) -> DashboardResponse:
    """Aggregate platform metrics for the admin dashboard."""
    user_store: UserStore = request.app.state.user_store
    market: MarketStore = request.app.state.market
    starts = _window_starts(datetime.now(timezone.utc))

    overview = {
        "users": _windowed(user_store.count_users, starts),
        "nfts": _windowed(market.count_nfts, starts),
        "transactions": _windowed(market.count_transactions, starts),
        "volume": _windowed(market.total_volume, starts),
        "auctions": _windowed(market.count_auctions, starts),
        "collections": _windowed(market.count_collections, starts),
    }

    recent_users = user_store.recent_users(limit=_RECENT)
    recent_nfts = market.recent_nfts(limit=_RECENT)
    recent_txs = market.recent_transactions(limit=_RECENT)
    creators = market.top_creators(limit=_RECENT)
    top_collections = market.top_collections_by_volume(limit=_RECENT)

    users = user_store.get_users_by_ids(
        {n.creator_id for n in recent_nfts} | {t.user_id for t in recent_txs} | {c["creator_id"] for c in creators}
    )
    tx_nfts = market.get_nfts_by_ids({t.nft_id for t in recent_txs})
    collections = market.get_collections_by_ids({c["collection_id"] for c in top_collections})

    top_creators = []
    for row in creators:
        summary = UserSummary.from_domain(users.get(row["creator_id"]))
        top_creators.append({"user": summary.model_dump() if summary else None, "nft_count": row["nft_count"]})
    top_by_volume = []
    for row in top_collections:
        summary = CollectionSummary.from_domain(collections.get(row["collection_id"]))
        top_by_volume.append({"collection": summary.model_dump() if summary else None, "volume": row["volume"]})

    return DashboardResponse(
        overview=overview,
        recent_activity={
            "users": [UserSummary.from_domain(u).model_dump() for u in recent_users],
            "nfts": [NFTResponse.from_domain(n, users.get(n.creator_id)).model_dump() for n in recent_nfts],
            "transactions": [
                TransactionResponse.from_domain(t, users.get(t.user_id), tx_nfts.get(t.nft_id)).model_dump()
                for t in recent_txs
            ],
        },
        top_performers={"creators": top_creators, "collections": top_by_volume},
        system_health={
            "database": "ok" if user_store.ping() else "error",
            "active_sessions": user_store.count_active_sessions(),
            "active_auctions": market.count_auctions(active_only=True),
        },
    )


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@router.get("/admin/settings", response_model=SettingsListResponse)
def list_settings(request: Request, current_user: User = Depends(require_admin)) -> SettingsListResponse:
    """Return every setting. Defaults are seeded on the first read of an empty table."""
    market: MarketStore = request.app.state.market
    seeded = market.ensure_default_settings()
    if seeded:
        logger.info("Seeded %d default settings", seeded)

    settings = market.list_settings()
    grouped: dict[str, dict] = {}
    for s in settings:
        prefix, _, rest = s.key.partition(".")
        try:
            value = setting_value(s)
        except (ValueError, json.JSONDecodeError):
            # Rows written outside the API may not match their declared type.
            value = s.value
        grouped.setdefault(prefix, {})[rest or prefix] = value

    return SettingsListResponse(settings=[SettingResponse.from_domain(s) for s in settings], grouped=grouped)


@router.post("/admin/settings", response_model=SettingResponse, status_code=201)
def create_setting(
    request: Request,
    body: SettingCreate,
    current_user: User = Depends(require_admin),
) -> SettingResponse:
    market: MarketStore = request.app.state.market
    if market.get_setting(body.key) is not None:
        raise api_error(400, "duplicate_key", "Setting key already exists.")
    _check_value(body.value, body.type.value)

    market.create_setting(
        SystemSetting(key=body.key, value=body.value, type=body.type.value, description=body.description)
    )
    logger.info("Setting %s created by user_id=%s", body.key, current_user.id)
    return SettingResponse.from_domain(market.get_setting(body.key))


@router.put("/admin/settings", response_model=SettingResponse)
def update_setting(
    request: Request,
    body: SettingUpdate,
    current_user: User = Depends(require_admin),
) -> SettingResponse:
    market: MarketStore = request.app.state.market
    existing = market.get_setting(body.key)
    if existing is None:
        raise not_found("Setting")
    _check_value(body.value, existing.type)

    market.update_setting(body.key, body.value, description=body.description)
    logger.info("Setting %s updated by user_id=%s", body.key, current_user.id)
    return SettingResponse.from_domain(market.get_setting(body.key))


@router.delete("/admin/settings", status_code=204)
def delete_setting(
    request: Request,
    key: Optional[str] = None,
    current_user: User = Depends(require_admin),
) -> Response:
    market: MarketStore = request.app.state.market
    if not key:
        raise api_error(400, "missing_param", "Query parameter 'key' is required.")
    if not market.delete_setting(key):
        raise not_found("Setting")
    logger.info("Setting %s deleted by user_id=%s", key, current_user.id)
    return Response(status_code=204)
