"""
Transaction service — the transaction processor and core financial logic.

THIS IS THE MOST CRITICAL FILE IN THE PROJECT. It handles:
  - Validating transaction requests in a fixed order
  - Authorizing the caller against the paying account
  - Executing deposits, withdrawals and transfers atomically
  - Publishing one outcome event per committed transaction
  - Scheduling recurring payments

Validation order (the first failure wins, nothing has been written yet):
  request present -> account fields present (not blank) for the type ->
  amount present, positive, at most MAX_TRANSACTION_AMOUNT and at most 4
  decimal places -> currency present -> type present.
  After the accounts are resolved: a transfer can't target its own source,
  and the request currency must match every affected account (there is no
  currency conversion).

Commit protocol:
  Everything from the ledger insert onward is one unit of work:

      create ledger row (PENDING) -> mark COMPLETED -> flush
      -> apply_delta(source, -amount) -> apply_delta(dest, +amount)
      -> COMMIT

  Any failure rolls the whole unit back: the ledger row and both balance
  changes disappear together, so a transfer can never be half-applied.
  A caller-supplied before_commit hook runs just before COMMIT, inside the
  same unit.
  The ordering is fixed (source debited before destination is credited).

Sufficiency:
  The balance pre-check only produces a friendly early error. Correctness
  rests on apply_delta(), whose conditional UPDATE re-checks the balance in
  the same statement that changes it.

Events:
  The outcome event is published only after COMMIT. Publishing is
  best-effort; a failure is logged and never touches the committed money.
"""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation as DecimalError
from typing import Awaitable, Callable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from bank_ledger.config import settings
from bank_ledger.database import MONEY_QUANTUM
from bank_ledger.events import EventPublisher, build_transaction_event
from bank_ledger.exceptions import (
    InsufficientFundsError,
    InvalidOperationError,
    UnauthorizedAccessError,
)
from bank_ledger.models.account import Account, AccountStatus
from bank_ledger.models.transaction import Transaction, TransactionStatus, TransactionType
from bank_ledger.schemas.transaction import RecurringTransactionRequest, TransactionRequest
from bank_ledger.services import account_service, ledger_service

logger = structlog.get_logger(__name__)

# Which account fields each type needs: (from required, to required)
_REQUIRED_ACCOUNTS: dict[TransactionType, tuple[bool, bool]] = {
    TransactionType.DEPOSIT: (False, True),
    TransactionType.WITHDRAWAL: (True, False),
    TransactionType.TRANSFER: (True, True),
}

# Extra writes that must commit (or roll back) together with a transaction
BeforeCommit = Callable[[Transaction], Awaitable[None]]


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def _validate_request(
    request: TransactionRequest | None,
    transaction_type: TransactionType,
) -> Decimal:
    """
    Check a request for the given operation and return its normalized amount.

    Raises:
        InvalidOperationError: On the first failing check.
    """
    if request is None:
        raise InvalidOperationError("Transaction request cannot be null")

    needs_from, needs_to = _REQUIRED_ACCOUNTS[transaction_type]
    if needs_from and _is_blank(request.from_account_number):
        raise InvalidOperationError(
            f"Source account is required for {transaction_type.value.lower()}"
        )
    if needs_to and _is_blank(request.to_account_number):
        raise InvalidOperationError(
            f"Destination account is required for {transaction_type.value.lower()}"
        )

    if request.amount is None or request.amount <= 0:
        raise InvalidOperationError("Amount must be greater than zero")
    if request.amount > settings.MAX_TRANSACTION_AMOUNT:
        raise InvalidOperationError(
            f"Amount cannot exceed {settings.MAX_TRANSACTION_AMOUNT}"
        )
    try:
        amount = request.amount.quantize(MONEY_QUANTUM)
    except DecimalError:
        raise InvalidOperationError("Amount is not a valid monetary value") from None
    if amount != request.amount:
        raise InvalidOperationError("Amount cannot have more than 4 decimal places")

    if not request.currency:
        raise InvalidOperationError("Currency is required")

    if request.transaction_type is None:
        raise InvalidOperationError("Transaction type is required")
    if request.transaction_type != transaction_type:
        raise InvalidOperationError(
            f"Transaction type {request.transaction_type.value} "
            f"does not match a {transaction_type.value.lower()} operation"
        )

    return amount


def _is_blank(value: str | None) -> bool:
    return not (value or "").strip()


def _check_account_usable(account: Account, currency: str) -> None:
    if account.status != AccountStatus.ACTIVE:
        raise InvalidOperationError(f"Account {account.account_number} is closed")
    if account.currency != currency:
        raise InvalidOperationError(
            f"Currency {currency} does not match account currency {account.currency}"
        )


async def _authorize(db: AsyncSession, account: Account, user_id: uuid.UUID) -> None:
    if not await account_service.is_owner(db, account.id, user_id):
        raise UnauthorizedAccessError("You don't have permission to use this account")


def _check_funds(account: Account, amount: Decimal) -> None:
    if account.balance < amount:
        raise InsufficientFundsError(
            account_id=account.id,
            requested=amount,
            available=account.balance,
        )


def _as_utc(value: datetime | None) -> datetime | None:
    """Naive datetimes are taken to be UTC already."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@asynccontextmanager
async def _unit_of_work(db: AsyncSession):
    """Commit on success; roll back everything on any failure."""
    try:
        yield
        await db.commit()
    except Exception:
        await db.rollback()
        raise


def _publish(publisher: EventPublisher | None, txn: Transaction) -> None:
    if publisher is None:
        return
    try:
        publisher.publish(build_transaction_event(txn))
    except Exception:
        logger.error(
            "transaction_event_publish_failed",
            reference=txn.reference,
            exc_info=True,
        )


async def _record(
    db: AsyncSession,
    request: TransactionRequest,
    amount: Decimal,
    transaction_type: TransactionType,
    source: Account | None,
    dest: Account | None,
    before_commit: BeforeCommit | None = None,
) -> Transaction:
    """
    Run the commit protocol for one validated, authorized request.

    before_commit, if given, runs after both deltas and inside the same unit
    of work; if it raises, the ledger row and the deltas are rolled back too.
    """
    async with _unit_of_work(db):
        txn = await ledger_service.create_transaction(
            db,
            from_account=source,
            to_account=dest,
            amount=amount,
            currency=request.currency,
            transaction_type=transaction_type,
            description=request.description,
            metadata=request.metadata,
        )
        await ledger_service.mark_status(db, txn, TransactionStatus.COMPLETED)
        if source is not None:
            await account_service.apply_delta(db, source.id, -amount)
        if dest is not None:
            await account_service.apply_delta(db, dest.id, amount)
        if before_commit is not None:
            await before_commit(txn)

    logger.info(
        "transaction_completed",
        reference=txn.reference,
        transaction_type=transaction_type.value,
        amount=str(amount),
        currency=txn.currency,
        from_account=txn.from_account_number,
        to_account=txn.to_account_number,
    )
    return txn


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

async def deposit(
    db: AsyncSession,
    request: TransactionRequest | None,
    user_id: uuid.UUID,
    publisher: EventPublisher | None = None,
    before_commit: BeforeCommit | None = None,
) -> Transaction:
    """
    Credit an account.

    Deposits don't check ownership of the destination: anyone may pay money
    into any account (payroll, third-party credits).

    Raises:
        InvalidOperationError: Validation failure, closed account, or
            currency mismatch.
        AccountNotFoundError: If the destination doesn't exist.
    """
    amount = _validate_request(request, TransactionType.DEPOSIT)
    dest = await account_service.get_account_by_number(db, request.to_account_number)
    _check_account_usable(dest, request.currency)

    txn = await _record(
        db, request, amount, TransactionType.DEPOSIT, None, dest, before_commit
    )
    _publish(publisher, txn)
    return txn


async def withdraw(
    db: AsyncSession,
    request: TransactionRequest | None,
    user_id: uuid.UUID,
    publisher: EventPublisher | None = None,
    before_commit: BeforeCommit | None = None,
) -> Transaction:
    """
    Debit an account owned by the caller.

    Raises:
        InvalidOperationError: Validation failure, closed account, or
            currency mismatch.
        UnauthorizedAccessError: If the caller doesn't own the account.
        AccountNotFoundError: If the account doesn't exist.
        InsufficientFundsError: If the balance is lower than the amount.
    """
    amount = _validate_request(request, TransactionType.WITHDRAWAL)
    source = await account_service.get_account_by_number(db, request.from_account_number)
    await _authorize(db, source, user_id)
    _check_account_usable(source, request.currency)
    _check_funds(source, amount)

    txn = await _record(
        db, request, amount, TransactionType.WITHDRAWAL, source, None, before_commit
    )
    _publish(publisher, txn)
    return txn


async def transfer(
    db: AsyncSession,
    request: TransactionRequest | None,
    user_id: uuid.UUID,
    publisher: EventPublisher | None = None,
    before_commit: BeforeCommit | None = None,
) -> Transaction:
    """
    Move money from an account owned by the caller to any other account.

    One ledger row covers both legs. Either both balances change or
    neither does.

    Raises:
        InvalidOperationError: Validation failure, same source and
            destination, closed account, or currency mismatch.
        UnauthorizedAccessError: If the caller doesn't own the source.
        AccountNotFoundError: If either account doesn't exist.
        InsufficientFundsError: If the source balance is lower than the amount.
    """
    amount = _validate_request(request, TransactionType.TRANSFER)
    source = await account_service.get_account_by_number(db, request.from_account_number)
    dest = await account_service.get_account_by_number(db, request.to_account_number)

    if source.id == dest.id:
        raise InvalidOperationError("Cannot transfer to the same account")

    await _authorize(db, source, user_id)
    _check_account_usable(source, request.currency)
    _check_account_usable(dest, request.currency)
    _check_funds(source, amount)

    txn = await _record(
        db, request, amount, TransactionType.TRANSFER, source, dest, before_commit
    )
    _publish(publisher, txn)
    return txn


Handler = Callable[
    [AsyncSession, TransactionRequest, uuid.UUID, EventPublisher | None, BeforeCommit | None],
    Awaitable[Transaction],
]

# PAYMENT and REFUND are recognized types with no handler yet
_HANDLERS: dict[TransactionType, Handler] = {
    TransactionType.DEPOSIT: deposit,
    TransactionType.WITHDRAWAL: withdraw,
    TransactionType.TRANSFER: transfer,
}


async def process_transaction(
    db: AsyncSession,
    request: TransactionRequest | None,
    user_id: uuid.UUID,
    publisher: EventPublisher | None = None,
    before_commit: BeforeCommit | None = None,
) -> Transaction:
    """
    Route a request to the handler for its declared type.

    before_commit is handed to the handler and joins its unit of work (the
    recurring scheduler uses it to advance the template atomically with the
    payment).

    Raises:
        InvalidOperationError: If the request or its type is missing, or the
            type has no handler (PAYMENT, REFUND). Handler errors propagate.
    """
    if request is None:
        raise InvalidOperationError("Transaction request cannot be null")
    if request.transaction_type is None:
        raise InvalidOperationError("Transaction type is required")

    handler = _HANDLERS.get(request.transaction_type)
    if handler is None:
        raise InvalidOperationError(
            f"Unsupported transaction type: {request.transaction_type.value}"
        )
    return await handler(db, request, user_id, publisher, before_commit)


# ---------------------------------------------------------------------------
# Recurring payments
# ---------------------------------------------------------------------------

async def schedule_recurring(
    db: AsyncSession,
    request: RecurringTransactionRequest,
    user_id: uuid.UUID,
) -> Transaction:
    """
    Validate a request and store it as a recurring template.

    The caller must own the paying account: the source for withdrawals and
    transfers, the destination for deposits (the scheduler runs each
    payment as that account's owner). No money moves until the scheduler
    runs the template.

    Raises:
        InvalidOperationError: Validation failure, unsupported type,
            closed account, or currency mismatch.
        UnauthorizedAccessError: If the caller doesn't own the paying account.
        AccountNotFoundError: If an account doesn't exist.
    """
    if request.transaction_type is None:
        raise InvalidOperationError("Transaction type is required")
    if request.transaction_type not in _HANDLERS:
        raise InvalidOperationError(
            f"Unsupported transaction type: {request.transaction_type.value}"
        )

    amount = _validate_request(request, request.transaction_type)
    needs_from, needs_to = _REQUIRED_ACCOUNTS[request.transaction_type]

    source = dest = None
    if needs_from:
        source = await account_service.get_account_by_number(db, request.from_account_number)
        _check_account_usable(source, request.currency)
    if needs_to:
        dest = await account_service.get_account_by_number(db, request.to_account_number)
        _check_account_usable(dest, request.currency)
    if source is not None and dest is not None and source.id == dest.id:
        raise InvalidOperationError("Cannot transfer to the same account")

    await _authorize(db, source or dest, user_id)

    template = await ledger_service.create_recurring(
        db,
        from_account=source,
        to_account=dest,
        amount=amount,
        currency=request.currency,
        transaction_type=request.transaction_type,
        frequency=request.frequency,
        first_payment_date=_as_utc(request.start_date) or datetime.now(timezone.utc),
        description=request.description,
        metadata=request.metadata,
    )
    return template
