"""
Custom exception classes and FastAPI exception handlers.

Why custom exceptions?
  The service layer raises domain-specific errors (like InsufficientFundsError)
  without importing HTTP concepts. The handler layer then translates these
  into proper HTTP responses. The same exceptions reach the recurring
  payment scheduler, which has no HTTP at all.

Exception hierarchy:
    BankAPIError (base)
    ├── NotFoundError                — a requested record doesn't exist
    │   ├── AccountNotFoundError
    │   └── TransactionNotFoundError
    ├── InsufficientFundsError       — debit/transfer when balance too low
    ├── InvalidOperationError        — validation failure or illegal transition
    │   └── UnauthorizedAccessError  — caller doesn't own the resource
    ├── IntegrityConflictError       — storage uniqueness violation
    │   └── DuplicateEmailError
    └── InvalidCredentialsError      — login failure

Anything else that escapes a route is an unexpected error: it is logged with
its traceback and the client receives a generic 500 without internal detail.
"""

import uuid
from decimal import Decimal

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Base exception
# ---------------------------------------------------------------------------

class BankAPIError(Exception):
    """Base exception for all ledger domain errors."""

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(self.detail)


# ---------------------------------------------------------------------------
# Domain exceptions
# ---------------------------------------------------------------------------

class NotFoundError(BankAPIError):
    """Raised when a requested record does not exist."""


class AccountNotFoundError(NotFoundError):
    """Raised when a requested account does not exist."""

    def __init__(self, account: uuid.UUID | str):
        self.account = account
        super().__init__(f"Account {account} not found")


class TransactionNotFoundError(NotFoundError):
    """Raised when no transaction matches the given reference."""

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Transaction {reference} not found")


class InsufficientFundsError(BankAPIError):
    """
    Raised when a debit or transfer would cause a negative balance.

    Attributes:
        account_id: The account that lacks sufficient funds.
        requested: The amount the caller tried to debit.
        available: The balance observed when the debit was rejected, if known.
    """

    def __init__(
        self,
        account_id: uuid.UUID,
        requested: Decimal,
        available: Decimal | None = None,
    ):
        self.account_id = account_id
        self.requested = requested
        self.available = available
        super().__init__("Insufficient funds in the source account")


class InvalidOperationError(BankAPIError):
    """Raised for invalid requests and illegal state transitions."""


class UnauthorizedAccessError(InvalidOperationError):
    """Raised when a user attempts to act on a resource they don't own."""

    def __init__(self, detail: str = "You do not have access to this resource"):
        super().__init__(detail)


class IntegrityConflictError(BankAPIError):
    """Raised when a write violates a uniqueness constraint."""


class DuplicateEmailError(IntegrityConflictError):
    """Raised when attempting to register with an email that's already in use."""

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Email {email} is already registered")


class InvalidCredentialsError(BankAPIError):
    """Raised when login credentials are incorrect."""

    def __init__(self):
        super().__init__("Invalid email or password")


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

def register_exception_handlers(app: FastAPI) -> None:
    """
    Register custom exception handlers with the FastAPI application.

    Each handler maps a domain exception to an HTTP status code and a
    consistent JSON body: {"detail": "...", "error_type": "..."}.
    Starlette picks the handler registered for the closest class in the
    exception's MRO, so UnauthorizedAccessError gets 403 even though it is
    also an InvalidOperationError.
    """

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content={"detail": exc.detail, "error_type": "not_found"},
        )

    @app.exception_handler(InsufficientFundsError)
    async def insufficient_funds_handler(
        request: Request, exc: InsufficientFundsError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=422,  # The request was well-formed but business rules reject it
            content={
                "detail": exc.detail,
                "error_type": "insufficient_funds",
                "requested": str(exc.requested),
            },
        )

    @app.exception_handler(InvalidOperationError)
    async def invalid_operation_handler(
        request: Request, exc: InvalidOperationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"detail": exc.detail, "error_type": "invalid_operation"},
        )

    @app.exception_handler(UnauthorizedAccessError)
    async def unauthorized_access_handler(
        request: Request, exc: UnauthorizedAccessError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=403,
            content={"detail": exc.detail, "error_type": "unauthorized_access"},
        )

    @app.exception_handler(IntegrityConflictError)
    async def integrity_conflict_handler(
        request: Request, exc: IntegrityConflictError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=409,  # Conflict — the resource already exists
            content={"detail": exc.detail, "error_type": "integrity_conflict"},
        )

    @app.exception_handler(InvalidCredentialsError)
    async def invalid_credentials_handler(
        request: Request, exc: InvalidCredentialsError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=401,
            content={"detail": exc.detail, "error_type": "invalid_credentials"},
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "unexpected_error",
            path=request.url.path,
            method=request.method,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={
                "detail": "An unexpected error occurred",
                "error_type": "unexpected",
            },
        )
