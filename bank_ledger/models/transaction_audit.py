"""
TransactionAudit model — the audit trail written from outcome events.

Rows are created by the audit consumer of the event bus, not by the
transaction processor, so the audit trail is decoupled from the financial
commit. The UNIQUE transaction_id makes the consumer idempotent: a
redelivered event finds its row already present and is skipped.

Recurring runs publish one event per attempt (COMPLETED or FAILED), each
with its own reference, so every scheduled attempt is audited.
"""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import String, Text, DateTime, Integer
from sqlalchemy.orm import Mapped, mapped_column

from bank_ledger.database import Base, Money


class TransactionAudit(Base):
    __tablename__ = "transaction_audit"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Transaction reference from the event
    transaction_id: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
    )

    from_account: Mapped[str | None] = mapped_column(String(20), nullable=True)
    to_account: Mapped[str | None] = mapped_column(String(20), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # When the event happened, as stamped by the publisher
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
