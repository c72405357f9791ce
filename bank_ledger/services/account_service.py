"""
Account service — the account store and its balance-mutation primitive.

This module handles:
  - Account creation (id reserved up front, account number derived from it)
  - Account retrieval (by id or number; owner-scoped variants for the API)
  - apply_delta(): the ONLY code path that changes a balance
  - Balance verification (cached vs. computed from transactions)
  - Closing accounts

The balance-delta primitive:
  apply_delta() issues a single conditional statement:

      UPDATE accounts
         SET balance = balance + :delta
       WHERE id = :id AND status = 'ACTIVE' AND balance + :delta >= 0
         AND balance <= :max_balance - :delta
   RETURNING balance

  The read, the sufficiency check and the write happen inside one
  statement, so concurrent deltas can't lose updates and a debit can't
  overdraw an account no matter how callers interleave. There is no
  application-level lock and no optimistic retry loop. The database is
  the correctness boundary.

Ownership enforcement:
  is_owner() is the authorization gate used by every transaction entry
  point. Owner-scoped getters raise UnauthorizedAccessError for accounts
  that belong to somebody else.
"""

import uuid
from decimal import Decimal

import structlog
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value
from sqlalchemy.orm.util import identity_key

from bank_ledger.config import settings
from bank_ledger.exceptions import (
    AccountNotFoundError,
    InsufficientFundsError,
    InvalidOperationError,
    UnauthorizedAccessError,
)
from bank_ledger.models.account import Account, AccountStatus, AccountType
from bank_ledger.models.transaction import (
    Transaction,
    TransactionStatus,
    TransactionType,
)

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")


def generate_account_number(account_type: AccountType, account_id: uuid.UUID) -> str:
    """
    Derive the human-readable account number from type and id.

    Format: first three letters of the type + 10 digits taken from the id,
    e.g. "CHK0482913375". The id is random, so numbers are not sequential.
    """
    prefix = account_type.value[:3]
    return f"{prefix}{account_id.int % 10**10:010d}"


async def create_account(
    db: AsyncSession,
    owner_id: uuid.UUID,
    account_type: AccountType = AccountType.CHECKING,
    currency: str = "USD",
    initial_balance: Decimal = ZERO,
) -> Account:
    """
    Open a new account for a user.

    The id is reserved before the INSERT so the account number can be
    computed from it and written in the same statement. There is no
    insert-then-patch window where the row exists without a number.

    A positive initial balance is recorded as a COMPLETED opening deposit
    in the same unit of work, keeping the balance equal to the sum of the
    account's completed transactions.

    Args:
        db: Database session.
        owner_id: The owning user's id.
        account_type: Kind of account.
        currency: ISO 4217 code for the account.
        initial_balance: Opening balance, must be >= 0.

    Returns:
        The newly created Account instance (flushed, not yet committed).

    Raises:
        InvalidOperationError: If the initial balance is negative or above
            MAX_TRANSACTION_AMOUNT.
    """
    if initial_balance is None or initial_balance < ZERO:
        raise InvalidOperationError("Initial balance cannot be negative")
    if initial_balance > settings.MAX_TRANSACTION_AMOUNT:
        raise InvalidOperationError(
            f"Initial balance cannot exceed {settings.MAX_TRANSACTION_AMOUNT}"
        )

    # Reserve an id whose derived number is free (collisions are extremely unlikely)
    for _ in range(10):
        account_id = uuid.uuid4()
        account_number = generate_account_number(account_type, account_id)
        existing = await db.execute(
            select(Account.id).where(Account.account_number == account_number)
        )
        if existing.scalar_one_or_none() is None:
            break
    else:
        raise RuntimeError("Failed to generate a unique account number")

    account = Account(
        id=account_id,
        account_number=account_number,
        owner_id=owner_id,
        account_type=account_type,
        currency=currency,
        balance=initial_balance,
        status=AccountStatus.ACTIVE,
    )
    db.add(account)

    if initial_balance > ZERO:
        db.add(
            Transaction(
                to_account=account,
                amount=initial_balance,
                currency=currency,
                transaction_type=TransactionType.DEPOSIT,
                status=TransactionStatus.COMPLETED,
                description="Opening deposit",
            )
        )

    await db.flush()
    logger.info(
        "account_created",
        account_number=account_number,
        account_type=account_type.value,
        currency=currency,
    )
    return account


async def get_account_by_id(db: AsyncSession, account_id: uuid.UUID) -> Account:
    """Load an account without any ownership check."""
    result = await db.execute(select(Account).where(Account.id == account_id))
    account = result.scalar_one_or_none()
    if account is None:
        raise AccountNotFoundError(account_id)
    return account


async def get_account_by_number(db: AsyncSession, account_number: str) -> Account:
    """Resolve an account number to its account, without any ownership check."""
    result = await db.execute(
        select(Account).where(Account.account_number == account_number)
    )
    account = result.scalar_one_or_none()
    if account is None:
        raise AccountNotFoundError(account_number)
    return account


async def get_accounts(db: AsyncSession, owner_id: uuid.UUID) -> list[Account]:
    """List all accounts belonging to a user, oldest first."""
    result = await db.execute(
        select(Account)
        .where(Account.owner_id == owner_id)
        .order_by(Account.created_at)
    )
    return list(result.scalars().all())


async def get_account(
    db: AsyncSession,
    account_id: uuid.UUID,
    owner_id: uuid.UUID,
) -> Account:
    """
    Get a single account, verifying ownership.

    Raises:
        AccountNotFoundError: If the account doesn't exist.
        UnauthorizedAccessError: If the account belongs to someone else.
    """
    account = await get_account_by_id(db, account_id)
    if account.owner_id != owner_id:
        raise UnauthorizedAccessError("You do not have access to this account")
    return account


async def is_owner(
    db: AsyncSession,
    account_id: uuid.UUID,
    owner_id: uuid.UUID,
) -> bool:
    """True if the account exists and belongs to the given user."""
    result = await db.execute(
        select(func.count())
        .select_from(Account)
        .where(Account.id == account_id, Account.owner_id == owner_id)
    )
    return result.scalar_one() > 0


async def get_balance(db: AsyncSession, account_id: uuid.UUID) -> Decimal:
    """Current stored balance of an account."""
    result = await db.execute(select(Account.balance).where(Account.id == account_id))
    balance = result.scalar_one_or_none()
    if balance is None:
        raise AccountNotFoundError(account_id)
    return balance


async def apply_delta(
    db: AsyncSession,
    account_id: uuid.UUID,
    delta: Decimal,
) -> Decimal:
    """
    Atomically add a signed amount to an account's balance.

    One conditional UPDATE ... RETURNING does the whole job (see module
    docstring). When no row matches, a follow-up read tells the caller why.

    Args:
        db: Database session. The update joins the session's transaction.
        account_id: Account to adjust.
        delta: Signed amount; negative for debits.

    Returns:
        The balance after the update.

    Raises:
        AccountNotFoundError: If no account has this id.
        InvalidOperationError: If the account is closed, or the update would
            push the balance past MAX_BALANCE.
        InsufficientFundsError: If the update would make the balance negative.
    """
    result = await db.execute(
        update(Account)
        .where(
            Account.id == account_id,
            Account.status == AccountStatus.ACTIVE,
            Account.balance + delta >= 0,
            # Column alone on the left so the bound value is scaled as Money
            Account.balance <= settings.MAX_BALANCE - delta,
        )
        .values(balance=Account.balance + delta)
        .returning(Account.balance)
        .execution_options(synchronize_session=False)
    )
    new_balance = result.scalar_one_or_none()

    if new_balance is None:
        row = await db.execute(
            select(Account.status, Account.balance).where(Account.id == account_id)
        )
        current = row.one_or_none()
        if current is None:
            raise AccountNotFoundError(account_id)
        if current.status != AccountStatus.ACTIVE:
            raise InvalidOperationError("Account is closed")
        if current.balance + delta > settings.MAX_BALANCE:
            raise InvalidOperationError("Account balance limit exceeded")
        raise InsufficientFundsError(
            account_id=account_id,
            requested=-delta,
            available=current.balance,
        )

    # Keep any loaded instance in step with the row without marking it dirty
    loaded = db.identity_map.get(identity_key(Account, account_id))
    if loaded is not None:
        set_committed_value(loaded, "balance", new_balance)

    logger.debug("balance_delta_applied", account_id=str(account_id), delta=str(delta))
    return new_balance


async def close_account(
    db: AsyncSession,
    account_id: uuid.UUID,
    owner_id: uuid.UUID,
) -> Account:
    """
    Close an account. Only the owner may close it, and only at a zero balance.

    The status change is itself a conditional UPDATE on balance = 0, so a
    deposit racing with the close can't leave money in a CLOSED account.

    Raises:
        AccountNotFoundError: If the account doesn't exist.
        InvalidOperationError: If the caller isn't the owner, the account is
            already closed, or the balance isn't exactly zero.
    """
    account = await get_account_by_id(db, account_id)

    if account.owner_id != owner_id:
        raise UnauthorizedAccessError("You don't have permission to close this account")
    if account.status == AccountStatus.CLOSED:
        raise InvalidOperationError("Account is already closed")

    result = await db.execute(
        update(Account)
        .where(
            Account.id == account_id,
            Account.status == AccountStatus.ACTIVE,
            Account.balance == ZERO,
        )
        .values(status=AccountStatus.CLOSED)
        .returning(Account.id)
        .execution_options(synchronize_session=False)
    )
    if result.scalar_one_or_none() is None:
        raise InvalidOperationError("Cannot close an account with a non-zero balance")

    set_committed_value(account, "status", AccountStatus.CLOSED)
    logger.info("account_closed", account_number=account.account_number)
    return account


async def get_balance_summary(
    db: AsyncSession,
    account_id: uuid.UUID,
    owner_id: uuid.UUID,
) -> dict:
    """
    Get the account balance — both stored and computed from transactions.

    The computed balance sums COMPLETED credits minus COMPLETED debits.
    If it doesn't match the stored balance, that signals a data integrity
    issue.
    """
    account = await get_account(db, account_id, owner_id)
    computed = await _compute_balance_from_transactions(db, account_id)

    return {
        "account_id": account.id,
        "account_number": account.account_number,
        "balance": account.balance,
        "computed_balance": computed,
        "match": account.balance == computed,
        "currency": account.currency,
    }


async def _compute_balance_from_transactions(
    db: AsyncSession,
    account_id: uuid.UUID,
) -> Decimal:
    """
    Sum all COMPLETED transactions touching the account.

    Recurring templates are schedules, not movements of money, and are
    left out even when their last run completed.
    """
    completed = (
        Transaction.status == TransactionStatus.COMPLETED,
        Transaction.recurring.is_(False),
    )

    credit_result = await db.execute(
        select(func.coalesce(func.sum(Transaction.amount), 0))
        .where(Transaction.to_account_id == account_id, *completed)
    )
    debit_result = await db.execute(
        select(func.coalesce(func.sum(Transaction.amount), 0))
        .where(Transaction.from_account_id == account_id, *completed)
    )

    return credit_result.scalar_one() - debit_result.scalar_one()
