"""
Ledger service — persistence and lookup of transaction records.

Every transaction attempt that reaches the commit protocol gets exactly one
row here, created PENDING with a freshly generated reference. The reference
is a UUID4 string backed by a UNIQUE index: it is assigned once, never
reused, and never changes. A uniqueness violation on insert surfaces as
IntegrityConflictError instead of a raw database error.

Listings are paged (limit/offset) and ordered newest first.

Recurring templates also live in this table (recurring=True); see
models/transaction.py. They are created, scanned and cancelled here, and
executed by services/recurring_service.py.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import select, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bank_ledger.exceptions import (
    IntegrityConflictError,
    InvalidOperationError,
    TransactionNotFoundError,
    UnauthorizedAccessError,
)
from bank_ledger.models.account import Account
from bank_ledger.models.transaction import (
    Frequency,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from bank_ledger.services import account_service

logger = structlog.get_logger(__name__)


async def create_transaction(
    db: AsyncSession,
    from_account: Account | None,
    to_account: Account | None,
    amount: Decimal,
    currency: str,
    transaction_type: TransactionType,
    description: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> Transaction:
    """
    Insert a new PENDING transaction with a newly generated reference.

    The row is flushed so the reference is claimed in the database right
    away; it stays part of the caller's unit of work and disappears if
    that unit rolls back.

    Raises:
        IntegrityConflictError: If the reference collides with an existing one.
    """
    txn = Transaction(
        from_account=from_account,
        to_account=to_account,
        amount=amount,
        currency=currency,
        transaction_type=transaction_type,
        status=TransactionStatus.PENDING,
        description=description,
        meta=metadata,
    )
    db.add(txn)
    await _flush(db)
    return txn


async def mark_status(
    db: AsyncSession,
    txn: Transaction,
    status: TransactionStatus,
) -> Transaction:
    """Move a transaction to a new status and flush it."""
    txn.status = status
    await _flush(db)
    return txn


async def find_by_reference(db: AsyncSession, reference: str) -> Transaction:
    """
    Look up a transaction by its reference.

    Raises:
        TransactionNotFoundError: If no transaction has this reference.
    """
    result = await db.execute(
        select(Transaction).where(Transaction.reference == reference)
    )
    txn = result.scalar_one_or_none()
    if txn is None:
        raise TransactionNotFoundError(reference)
    return txn


async def get_user_transaction(
    db: AsyncSession,
    reference: str,
    user_id: uuid.UUID,
) -> Transaction:
    """
    Look up a transaction by reference on behalf of a user.

    Only parties to the transaction (owner of either account) can see it;
    for anyone else it doesn't exist, so references can't be probed.
    """
    txn = await find_by_reference(db, reference)
    owners = {
        account.owner_id
        for account in (txn.from_account, txn.to_account)
        if account is not None
    }
    if user_id not in owners:
        raise TransactionNotFoundError(reference)
    return txn


async def list_by_account(
    db: AsyncSession,
    account_id: uuid.UUID,
    user_id: uuid.UUID,
    limit: int = 20,
    offset: int = 0,
) -> list[Transaction]:
    """
    List transactions where the account is source or destination, newest first.

    Raises:
        UnauthorizedAccessError: If the user doesn't own the account.
    """
    if not await account_service.is_owner(db, account_id, user_id):
        raise UnauthorizedAccessError(
            "You don't have permission to view transactions for this account"
        )

    result = await db.execute(
        select(Transaction)
        .where(
            or_(
                Transaction.from_account_id == account_id,
                Transaction.to_account_id == account_id,
            )
        )
        .order_by(Transaction.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def list_by_user(
    db: AsyncSession,
    user_id: uuid.UUID,
    limit: int = 20,
    offset: int = 0,
) -> list[Transaction]:
    """List transactions touching any of the user's accounts, newest first."""
    owned = select(Account.id).where(Account.owner_id == user_id)

    result = await db.execute(
        select(Transaction)
        .where(
            or_(
                Transaction.from_account_id.in_(owned),
                Transaction.to_account_id.in_(owned),
            )
        )
        .order_by(Transaction.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Recurring templates
# ---------------------------------------------------------------------------

async def create_recurring(
    db: AsyncSession,
    from_account: Account | None,
    to_account: Account | None,
    amount: Decimal,
    currency: str,
    transaction_type: TransactionType,
    frequency: Frequency,
    first_payment_date: datetime,
    description: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> Transaction:
    """Insert a recurring template. No money moves until the scheduler runs it."""
    txn = Transaction(
        from_account=from_account,
        to_account=to_account,
        amount=amount,
        currency=currency,
        transaction_type=transaction_type,
        status=TransactionStatus.PENDING,
        description=description,
        meta=metadata,
        recurring=True,
        frequency=frequency,
        next_payment_date=first_payment_date,
    )
    db.add(txn)
    await _flush(db)
    logger.info(
        "recurring_transaction_scheduled",
        reference=txn.reference,
        frequency=frequency.value,
        next_payment_date=first_payment_date.isoformat(),
    )
    return txn


async def find_due_recurring(db: AsyncSession, now: datetime) -> list[Transaction]:
    """All recurring templates whose next payment date is at or before `now`."""
    result = await db.execute(
        select(Transaction)
        .where(
            Transaction.recurring.is_(True),
            Transaction.next_payment_date <= now,
        )
        .order_by(Transaction.next_payment_date)
    )
    return list(result.scalars().all())


async def cancel_recurring(
    db: AsyncSession,
    reference: str,
    user_id: uuid.UUID,
) -> Transaction:
    """
    Stop a recurring template from ever running again.

    Only the owner of the account the payments are drawn from (or paid
    into, for recurring deposits) may cancel.
    """
    txn = await get_user_transaction(db, reference, user_id)
    if not txn.recurring:
        raise InvalidOperationError("Transaction is not a recurring payment")

    payer = txn.from_account or txn.to_account
    if payer.owner_id != user_id:
        raise UnauthorizedAccessError("You don't have permission to cancel this payment")

    txn.recurring = False
    txn.next_payment_date = None
    txn.status = TransactionStatus.CANCELLED
    await _flush(db)
    logger.info("recurring_transaction_cancelled", reference=reference)
    return txn


async def _flush(db: AsyncSession) -> None:
    try:
        await db.flush()
    except IntegrityError as exc:
        logger.warning("ledger_integrity_conflict", error=str(exc.orig))
        raise IntegrityConflictError("Transaction conflicts with an existing record") from exc
