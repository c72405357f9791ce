"""
Accounts router — account management endpoints.

All endpoints require a JWT and are scoped to the authenticated user:

    POST   /accounts                              — Open a new account
    GET    /accounts                              — List own accounts
    GET    /accounts/{account_id}                 — Account details
    GET    /accounts/{account_id}/balance         — Stored vs computed balance
    POST   /accounts/{account_id}/close           — Close a zero-balance account
    GET    /accounts/{account_id}/transactions    — Paged transaction history

Another user's account gives 403; an unknown id gives 404.
"""

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from bank_ledger.database import get_db
from bank_ledger.dependencies import get_current_user
from bank_ledger.models.user import User
from bank_ledger.schemas.account import AccountCreateRequest, AccountResponse, BalanceResponse
from bank_ledger.schemas.transaction import TransactionResponse
from bank_ledger.services import account_service, ledger_service

router = APIRouter()


@router.post(
    "",
    response_model=AccountResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open a new account",
)
async def create_account(
    request: AccountCreateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Open an account owned by the authenticated user.

    The account number is the type prefix (CHK, SAV, BUS, INV) followed by
    10 digits. A positive **initial_balance** is recorded as an opening
    deposit.
    """
    return await account_service.create_account(
        db=db,
        owner_id=user.id,
        account_type=request.account_type,
        currency=request.currency,
        initial_balance=request.initial_balance,
    )


@router.get("", response_model=list[AccountResponse], summary="List your accounts")
async def list_accounts(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await account_service.get_accounts(db, user.id)


@router.get("/{account_id}", response_model=AccountResponse, summary="Get account details")
async def get_account(
    account_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await account_service.get_account(db, account_id, user.id)


@router.get(
    "/{account_id}/balance",
    response_model=BalanceResponse,
    summary="Check account balance",
)
async def get_balance(
    account_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Get the stored balance alongside the balance computed from completed
    transactions. `match` is false only if the two disagree, which would
    mean a data integrity problem.
    """
    return await account_service.get_balance_summary(db, account_id, user.id)


@router.post(
    "/{account_id}/close",
    response_model=AccountResponse,
    summary="Close an account",
)
async def close_account(
    account_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Close an account. The balance must be exactly zero; closing is permanent.
    """
    return await account_service.close_account(db, account_id, user.id)


@router.get(
    "/{account_id}/transactions",
    response_model=list[TransactionResponse],
    summary="List an account's transactions",
)
async def list_account_transactions(
    account_id: uuid.UUID,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Transactions where the account is source or destination, newest first."""
    return await ledger_service.list_by_account(
        db, account_id, user.id, limit=limit, offset=offset
    )
