"""
Account model — a bank account owned by a User.

Each account has:
  - A unique account number: a 3-letter type prefix plus 10 digits derived
    from the account id (e.g. "CHK0123456789")
  - A type: checking, savings, business or investment
  - A balance stored with the Money type (exact, 4 fractional digits)
  - A currency code (ISO 4217)
  - A status: ACTIVE or CLOSED

Balance management:
  The balance is only ever changed by account_service.apply_delta(), a
  single conditional UPDATE executed in the same database transaction as
  the ledger row it belongs to. It is therefore always consistent with the
  sum of COMPLETED transactions touching the account.

  A CHECK constraint at the database level enforces that the balance can
  never go negative. apply_delta() already refuses such updates in its
  WHERE clause; the constraint is the final safety net against bugs.

Closing:
  An account can only be closed at a zero balance, and CLOSED is terminal:
  no further deltas are accepted.
"""

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import String, DateTime, Enum, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bank_ledger.database import Base, Money


class AccountType(str, enum.Enum):
    """Kind of account. The value's first three letters prefix the account number."""
    CHECKING = "CHECKING"
    SAVINGS = "SAVINGS"
    BUSINESS = "BUSINESS"
    INVESTMENT = "INVESTMENT"


class AccountStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


class Account(Base):
    __tablename__ = "accounts"

    __table_args__ = (
        CheckConstraint(
            "balance >= 0",
            name="ck_accounts_non_negative_balance",
        ),
    )

    # Reserved by the service before insert so the account number can be
    # derived from it in the same INSERT
    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    account_number: Mapped[str] = mapped_column(
        String(20),
        unique=True,
        nullable=False,
        index=True,
    )

    owner_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )

    account_type: Mapped[AccountType] = mapped_column(
        Enum(AccountType),
        nullable=False,
        default=AccountType.CHECKING,
    )

    balance: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
        default=Decimal("0"),
    )

    # ISO 4217 currency code
    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="USD",
    )

    status: Mapped[AccountStatus] = mapped_column(
        Enum(AccountStatus),
        nullable=False,
        default=AccountStatus.ACTIVE,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    # --- Relationships ---
    owner: Mapped["User"] = relationship(
        back_populates="accounts",
    )
