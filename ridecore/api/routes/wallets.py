"""
Wallet endpoints
================

GET  /api/v1/wallets/{user_id}               -- balance and status
POST /api/v1/wallets/{user_id}/top-up        -- credit the wallet
POST /api/v1/wallets/{user_id}/withdraw      -- debit the wallet
GET  /api/v1/wallets/{user_id}/transactions  -- history, newest first
GET  /api/v1/wallets/{user_id}/verify        -- replay the ledger
"""

from fastapi import APIRouter, Depends, Query, Request

from ridecore.api.dependencies import get_ledger
from ridecore.api.middleware import RATE_LIMIT, limiter
from ridecore.api.schemas import (
    AmountRequest,
    ErrorResponse,
    LedgerCheckResponse,
    WalletResponse,
    WalletTransactionResponse,
)
from ridecore.services.wallet_ledger import WalletLedger

router = APIRouter(prefix="/wallets", tags=["wallets"])


@router.get("/{user_id}", response_model=WalletResponse, summary="Get a wallet")
@limiter.limit(RATE_LIMIT)
async def get_wallet(
    request: Request,
    user_id: str,
    ledger: WalletLedger = Depends(get_ledger),
):
    return await ledger.get_wallet(user_id)


@router.post(
    "/{user_id}/top-up",
    status_code=201,
    response_model=WalletTransactionResponse,
    summary="Top up a wallet",
    responses={422: {"model": ErrorResponse}},
)
@limiter.limit(RATE_LIMIT)
async def top_up(
    request: Request,
    user_id: str,
    body: AmountRequest,
    ledger: WalletLedger = Depends(get_ledger),
):
    return await ledger.top_up(
        user_id, body.amount, body.reference, body.description or "Wallet top-up"
    )


@router.post(
    "/{user_id}/withdraw",
    status_code=201,
    response_model=WalletTransactionResponse,
    summary="Withdraw from a wallet",
    responses={402: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
@limiter.limit(RATE_LIMIT)
async def withdraw(
    request: Request,
    user_id: str,
    body: AmountRequest,
    ledger: WalletLedger = Depends(get_ledger),
):
    return await ledger.withdraw(
        user_id, body.amount, body.reference, body.description or "Wallet withdrawal"
    )


@router.get(
    "/{user_id}/transactions",
    response_model=list[WalletTransactionResponse],
    summary="Transaction history, newest first",
)
@limiter.limit(RATE_LIMIT)
async def history(
    request: Request,
    user_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    ledger: WalletLedger = Depends(get_ledger),
):
    return await ledger.history(user_id, page=page, limit=limit)


@router.get(
    "/{user_id}/verify",
    response_model=LedgerCheckResponse,
    summary="Check the balance against the replayed ledger",
)
@limiter.limit(RATE_LIMIT)
async def verify(
    request: Request,
    user_id: str,
    ledger: WalletLedger = Depends(get_ledger),
):
    return LedgerCheckResponse(user_id=user_id, consistent=await ledger.verify(user_id))
