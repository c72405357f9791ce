"""
Transactions router — moving money and reading the ledger.

Endpoints (all require a JWT):
  POST   /transactions                           — Dispatch by transaction_type
  POST   /transactions/deposit                   — Credit any account
  POST   /transactions/withdraw                  — Debit an own account
  POST   /transactions/transfer                  — Own account -> any account
  GET    /transactions                           — Own transactions, paged
  GET    /transactions/{reference}               — One transaction by reference
  POST   /transactions/recurring                 — Schedule a recurring payment
  DELETE /transactions/recurring/{reference}     — Cancel a recurring payment

The typed endpoints fill in transaction_type when the body omits it.
Successful money movements return 201 with the COMPLETED transaction;
validation problems return 400, someone else's account 403, a missing
account 404 and a short balance 422.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from bank_ledger.database import get_db
from bank_ledger.dependencies import get_current_user, get_event_bus
from bank_ledger.events import EventBus
from bank_ledger.models.transaction import TransactionType
from bank_ledger.models.user import User
from bank_ledger.schemas.transaction import (
    RecurringTransactionRequest,
    TransactionRequest,
    TransactionResponse,
)
from bank_ledger.services import ledger_service, transaction_service

router = APIRouter()


def _typed(request: TransactionRequest, transaction_type: TransactionType) -> TransactionRequest:
    if request.transaction_type is None:
        return request.model_copy(update={"transaction_type": transaction_type})
    return request


@router.post(
    "",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Process a transaction of any supported type",
)
async def process_transaction(
    request: TransactionRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    bus: EventBus | None = Depends(get_event_bus),
):
    """
    Route the request by **transaction_type**: DEPOSIT, WITHDRAWAL or
    TRANSFER. PAYMENT and REFUND are not supported yet (400).
    """
    return await transaction_service.process_transaction(db, request, user.id, bus)


@router.post(
    "/deposit",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Deposit into an account",
)
async def deposit(
    request: TransactionRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    bus: EventBus | None = Depends(get_event_bus),
):
    """Credit **to_account_number**. The account may belong to anyone."""
    return await transaction_service.deposit(
        db, _typed(request, TransactionType.DEPOSIT), user.id, bus
    )


@router.post(
    "/withdraw",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Withdraw from your account",
)
async def withdraw(
    request: TransactionRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    bus: EventBus | None = Depends(get_event_bus),
):
    """Debit **from_account_number**, which must be yours."""
    return await transaction_service.withdraw(
        db, _typed(request, TransactionType.WITHDRAWAL), user.id, bus
    )


@router.post(
    "/transfer",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Transfer between accounts",
)
async def transfer(
    request: TransactionRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    bus: EventBus | None = Depends(get_event_bus),
):
    """
    Atomic transfer: both balances change or neither does.

    - **from_account_number**: Must belong to the authenticated user
    - **to_account_number**: Any other account in the same currency
    """
    return await transaction_service.transfer(
        db, _typed(request, TransactionType.TRANSFER), user.id, bus
    )


@router.get(
    "",
    response_model=list[TransactionResponse],
    summary="List your transactions",
)
async def list_transactions(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Transactions touching any of your accounts, newest first."""
    return await ledger_service.list_by_user(db, user.id, limit=limit, offset=offset)


@router.post(
    "/recurring",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Schedule a recurring payment",
)
async def schedule_recurring(
    request: RecurringTransactionRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Store a recurring template. The scheduler runs it on **start_date**
    (default: its next daily run) and then every **frequency**.
    """
    return await transaction_service.schedule_recurring(db, request, user.id)


@router.delete(
    "/recurring/{reference}",
    response_model=TransactionResponse,
    summary="Cancel a recurring payment",
)
async def cancel_recurring(
    reference: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await ledger_service.cancel_recurring(db, reference, user.id)


@router.get(
    "/{reference}",
    response_model=TransactionResponse,
    summary="Get a transaction by reference",
)
async def get_transaction(
    reference: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Visible to the owners of either account involved; 404 for anyone else."""
    return await ledger_service.get_user_transaction(db, reference, user.id)
