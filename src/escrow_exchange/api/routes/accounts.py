"""Account and ledger REST API routes.

Routes:
    GET    /api/v1/accounts/me                       - Accounts of the caller and their orgs
    GET    /api/v1/accounts/{id}/entries             - Ledger entries, newest first
    GET    /api/v1/accounts/{id}/reconcile           - Stored balances vs ledger sums
    POST   /api/v1/accounts/deposit                  - Credit after an external payment
    POST   /api/v1/accounts/withdraw                 - Debit for an external payout
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query

from escrow_exchange.api.deps import get_account_service, get_app_settings, get_current_user_id
from escrow_exchange.config import Settings
from escrow_exchange.domain.values import AccountOwner
from escrow_exchange.schemas.account import (
    AccountResponse,
    DepositRequest,
    LedgerEntryResponse,
    ReconciliationResponse,
    WithdrawRequest,
)
from escrow_exchange.services.ledger_service import AccountService
from escrow_exchange.services.retry import run_with_retry

router = APIRouter(prefix="/api/v1/accounts", tags=["Accounts"])


def _owner(user_id: uuid.UUID, org_id: uuid.UUID | None) -> AccountOwner:
    return AccountOwner.org(org_id) if org_id is not None else AccountOwner.user(user_id)


@router.get("/me", response_model=list[AccountResponse], summary="My accounts")
async def my_accounts(
    user_id: uuid.UUID = Depends(get_current_user_id),
    svc: AccountService = Depends(get_account_service),
) -> list[AccountResponse]:
    accounts = await svc.list_accounts_for_user(user_id)
    return [AccountResponse.model_validate(a) for a in accounts]


@router.get(
    "/{account_id}/entries",
    response_model=list[LedgerEntryResponse],
    summary="Ledger entries",
)
async def list_entries(
    account_id: uuid.UUID,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    user_id: uuid.UUID = Depends(get_current_user_id),
    svc: AccountService = Depends(get_account_service),
) -> list[LedgerEntryResponse]:
    await svc.get_account_for_user(account_id, user_id)
    entries = await svc.get_entries(account_id, limit=limit, offset=offset)
    return [LedgerEntryResponse.model_validate(e) for e in entries]


@router.get(
    "/{account_id}/reconcile",
    response_model=ReconciliationResponse,
    summary="Reconcile an account",
)
async def reconcile(
    account_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    svc: AccountService = Depends(get_account_service),
) -> ReconciliationResponse:
    """Compare stored balances with the per-bucket sums of the ledger."""
    await svc.get_account_for_user(account_id, user_id)
    report = await svc.reconcile(account_id)
    return ReconciliationResponse(
        account_id=report.account_id,
        currency=report.currency,
        is_balanced=report.is_balanced,
        stored_available=report.stored_available,
        stored_in_contract=report.stored_in_contract,
        ledger_available=report.ledger_available,
        ledger_in_contract=report.ledger_in_contract,
        differences=report.differences,
    )


@router.post("/deposit", response_model=AccountResponse, summary="Deposit")
async def deposit(
    request: DepositRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    svc: AccountService = Depends(get_account_service),
    settings: Settings = Depends(get_app_settings),
) -> AccountResponse:
    """Credit the caller's (or one of their orgs') available balance."""
    owner = _owner(user_id, request.org_id)
    await svc.authorize_owner(owner, user_id)
    account = await run_with_retry(
        lambda: svc.deposit(
            owner,
            request.amount,
            request.currency or settings.default_currency,
            reference_id=request.reference_id,
            description=request.description,
        )
    )
    return AccountResponse.model_validate(account)


@router.post("/withdraw", response_model=AccountResponse, summary="Withdraw")
async def withdraw(
    request: WithdrawRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    svc: AccountService = Depends(get_account_service),
    settings: Settings = Depends(get_app_settings),
) -> AccountResponse:
    owner = _owner(user_id, request.org_id)
    await svc.authorize_owner(owner, user_id)
    account = await run_with_retry(
        lambda: svc.withdraw(
            owner,
            request.amount,
            request.currency or settings.default_currency,
            reference_id=request.reference_id,
            description=request.description,
        )
    )
    return AccountResponse.model_validate(account)
