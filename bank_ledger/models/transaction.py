"""
Transaction model — records every movement of money in the system.

One row per transaction, referencing up to two accounts:

  - DEPOSIT:    to_account only (money into an account)
  - WITHDRAWAL: from_account only (money out of an account)
  - TRANSFER:   both — a single row covers both legs, so a transfer can
                never be half-recorded

Key fields:
  - reference: Globally unique, immutable identifier assigned at creation.
    This is the public handle for a transaction (URLs, events, emails).
  - amount: Always positive (the direction is implied by the accounts).
  - status: PENDING while the unit of work is in flight, then COMPLETED.
    FAILED and CANCELLED are used by recurring templates.
  - meta: Opaque key/value mapping supplied by the caller (stored in the
    "metadata" column — `metadata` itself is reserved by SQLAlchemy).

Recurring templates:
  A row with recurring=True is a schedule, not a money movement. It carries
  the frequency and next/last payment dates; each scheduled run creates a
  fresh ordinary transaction and rewrites the template's status with the
  outcome of that run. Templates are excluded from computed balances.
"""

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bank_ledger.database import Base, Money


class TransactionType(str, enum.Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    TRANSFER = "TRANSFER"
    PAYMENT = "PAYMENT"
    REFUND = "REFUND"


class TransactionStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class Frequency(str, enum.Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    YEARLY = "YEARLY"


def generate_reference() -> str:
    return str(uuid.uuid4())


class Transaction(Base):
    __tablename__ = "transactions"

    __table_args__ = (
        # Amount must always be positive — direction is given by the accounts
        CheckConstraint("amount > 0", name="ck_transactions_positive_amount"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    reference: Mapped[str] = mapped_column(
        String(36),
        unique=True,
        nullable=False,
        index=True,
        default=generate_reference,
    )

    # Source account (NULL for deposits)
    from_account_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("accounts.id"),
        nullable=True,
        index=True,
    )

    # Destination account (NULL for withdrawals)
    to_account_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("accounts.id"),
        nullable=True,
        index=True,
    )

    amount: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
    )

    transaction_type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType),
        nullable=False,
    )

    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus),
        nullable=False,
        default=TransactionStatus.PENDING,
    )

    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    meta: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata",
        JSON,
        nullable=True,
    )

    # --- Recurring schedule (templates only) ---
    recurring: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        index=True,
    )

    frequency: Mapped[Frequency | None] = mapped_column(
        Enum(Frequency),
        nullable=True,
    )

    next_payment_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
    )

    last_payment_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Indexed for the newest-first listings
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    # --- Relationships ---
    # selectin loading: account numbers are needed for responses and events,
    # and lazy loading is not available in async sessions
    from_account: Mapped["Account | None"] = relationship(
        foreign_keys=[from_account_id],
        lazy="selectin",
    )
    to_account: Mapped["Account | None"] = relationship(
        foreign_keys=[to_account_id],
        lazy="selectin",
    )

    @property
    def from_account_number(self) -> str | None:
        return self.from_account.account_number if self.from_account else None

    @property
    def to_account_number(self) -> str | None:
        return self.to_account.account_number if self.to_account else None
