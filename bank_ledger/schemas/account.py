"""
Pydantic schemas for Account endpoints.

These schemas define the API contract for account creation, retrieval,
and balance checking. Balances are decimal amounts with 4 fractional
digits, serialized as strings.
"""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from bank_ledger.config import settings
from bank_ledger.models.account import AccountStatus, AccountType


class AccountCreateRequest(BaseModel):
    """Request body for POST /accounts."""
    account_type: AccountType = Field(
        default=AccountType.CHECKING,
        description="Type of bank account to create",
    )
    currency: str = Field(
        default_factory=lambda: settings.DEFAULT_CURRENCY,
        pattern=r"^[A-Z]{3}$",
    )
    initial_balance: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        decimal_places=4,
        description="Opening balance, recorded as an opening deposit",
    )


class AccountResponse(BaseModel):
    """Public representation of a bank account."""
    id: uuid.UUID
    owner_id: uuid.UUID
    account_type: AccountType
    account_number: str
    balance: Decimal
    currency: str
    status: AccountStatus
    created_at: datetime

    model_config = {"from_attributes": True}


class BalanceResponse(BaseModel):
    """
    Balance check response — includes both stored and computed values.

    The `match` field indicates whether the stored balance agrees with
    the balance computed by summing all completed transactions. A mismatch
    would indicate a data integrity issue.
    """
    account_id: uuid.UUID
    account_number: str
    balance: Decimal
    computed_balance: Decimal
    match: bool
    currency: str
