"""
SQLAlchemy ORM models package.

All models are imported here so that:
  1. Base.metadata knows every table before create_all() runs
  2. Other modules can import from bank_ledger.models directly
"""

from bank_ledger.models.user import User  # noqa: F401
from bank_ledger.models.account import Account, AccountStatus, AccountType  # noqa: F401
from bank_ledger.models.transaction import (  # noqa: F401
    Frequency,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from bank_ledger.models.transaction_audit import TransactionAudit  # noqa: F401
