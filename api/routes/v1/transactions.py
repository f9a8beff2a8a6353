"""
api/routes/v1/transactions.py -- Recorded on-chain transactions.

Routes:
  GET  /api/transactions   -- paginated, filterable history (public)
  POST /api/transactions   -- record a transaction (self or ADMIN)

A SALE or TRANSFER unlists the NFT and a SALE also marks it sold; the
store applies both in the same database transaction as the insert.
transaction_hash is UNIQUE, so a replayed hash is a 409.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.exc import IntegrityError

from api.errors import api_error, forbidden, not_found
from api.limiter import limiter
from api.models import (
    PaginationMeta,
    TransactionCreate,
    TransactionListResponse,
    TransactionResponse,
    TransactionSortField,
    TransactionTypeEnum,
)
from api.pagination import PageParams, page_params
from auth.dependencies import get_current_user
from auth.models import User
from auth.roles import ADMIN, has_permission
from auth.store import UserStore
from market import notifications
from market.models import Transaction
from market.store import MarketStore

logger = logging.getLogger("etheryte.transactions")

# Auth policy:
# - GET  /api/transactions: public -- the ledger mirrors public chain data
# - POST /api/transactions: requires auth; user_id must be the caller unless ADMIN
router = APIRouter()


@limiter.limit("120/minute")
@router.get("/transactions", response_model=TransactionListResponse)
def list_transactions(
    request: Request,
    paging: PageParams = Depends(page_params),
    sort_by: TransactionSortField = TransactionSortField.created_at,
    user_id: Optional[int] = None,
    nft_id: Optional[int] = None,
    type: Optional[TransactionTypeEnum] = None,
    min_amount: Optional[float] = Query(None, ge=0),
    max_amount: Optional[float] = Query(None, ge=0),
) -> TransactionListResponse:
    if min_amount is not None and max_amount is not None and min_amount > max_amount:
        raise api_error(400, "invalid_param", "min_amount must not exceed max_amount.")

    market: MarketStore = request.app.state.market
    user_store: UserStore = request.app.state.user_store

    txs, total = market.list_transactions(
        user_id=user_id,
        nft_id=nft_id,
        type=type.value if type else None,
        min_amount=min_amount,
        max_amount=max_amount,
        sort_by=sort_by.value,
        sort_order=paging.sort_order,
        offset=paging.offset,
        limit=paging.limit,
    )
    users = user_store.get_users_by_ids({t.user_id for t in txs})
    nfts = market.get_nfts_by_ids({t.nft_id for t in txs})
    return TransactionListResponse(
        transactions=[TransactionResponse.from_domain(t, users.get(t.user_id), nfts.get(t.nft_id)) for t in txs],
        pagination=PaginationMeta.build(paging.page, paging.limit, total),
    )


@limiter.limit("30/minute")
@router.post("/transactions", response_model=TransactionResponse, status_code=201)
def create_transaction(
    request: Request,
    body: TransactionCreate,
    current_user: User = Depends(get_current_user),
) -> TransactionResponse:
    """Record a transaction for an NFT and e-mail the user a receipt."""
    market: MarketStore = request.app.state.market
    user_store: UserStore = request.app.state.user_store

    if body.user_id != current_user.id and not has_permission(current_user.role, ADMIN):
        raise forbidden("You can only record transactions for yourself.")

    nft = market.get_nft(body.nft_id)
    if nft is None:
        raise not_found("NFT")
    user = user_store.get_by_id(body.user_id)
    if user is None:
        raise not_found("User")
    if body.type == TransactionTypeEnum.SALE and nft.creator_id != body.user_id:
        raise api_error(400, "not_creator", "Only the NFT's creator can record a sale.")

    try:
        tx_id = market.create_transaction(
            Transaction(
                nft_id=nft.id,
                user_id=user.id,
                amount=body.amount,
                transaction_hash=body.transaction_hash.lower(),
                type=body.type.value,
            )
        )
    except IntegrityError as exc:
        raise api_error(409, "conflict", "A transaction with this hash already exists.") from exc

    tx = market.get_transaction(tx_id)
    logger.info("Transaction %s %s nft_id=%s amount=%.4f", tx.id, tx.type, nft.id, tx.amount)
    notifications.send_transaction_completed(user.email, tx.type, nft.name, tx.amount, tx.transaction_hash)
    return TransactionResponse.from_domain(tx, user, nft)
