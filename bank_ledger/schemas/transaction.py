"""
Pydantic schemas for transaction endpoints.

Amounts are decimal values with at most 4 fractional digits
(e.g. "10.50"). They are returned as strings so no precision is lost
in JSON.

The request fields are all optional on purpose: the transaction processor
validates them in a fixed order and reports the first problem as an
InvalidOperationError (HTTP 400), the same way for API callers and for the
recurring payment scheduler.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from bank_ledger.config import settings
from bank_ledger.models.transaction import (
    Frequency,
    TransactionStatus,
    TransactionType,
)


class TransactionRequest(BaseModel):
    """Request body for POST /transactions and the typed endpoints."""
    from_account_number: str | None = None
    to_account_number: str | None = None
    amount: Decimal | None = None
    currency: str | None = Field(
        default_factory=lambda: settings.DEFAULT_CURRENCY,
        pattern=r"^[A-Z]{3}$",
    )
    transaction_type: TransactionType | None = None
    description: str | None = Field(None, max_length=255)
    metadata: dict[str, Any] | None = None


class RecurringTransactionRequest(TransactionRequest):
    """Request body for POST /transactions/recurring."""
    frequency: Frequency
    start_date: datetime | None = Field(
        None,
        description="First payment date (UTC). Defaults to the next scheduler run.",
    )


class TransactionResponse(BaseModel):
    """Public representation of a transaction or recurring template."""
    id: uuid.UUID
    reference: str
    from_account_number: str | None
    to_account_number: str | None
    amount: Decimal
    currency: str
    transaction_type: TransactionType
    status: TransactionStatus
    description: str | None
    metadata: dict[str, Any] | None = Field(
        None,
        validation_alias="meta",
    )
    recurring: bool
    frequency: Frequency | None
    next_payment_date: datetime | None
    last_payment_date: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}
