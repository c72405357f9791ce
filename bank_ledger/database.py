"""
Database engine, session management, base model class and the Money type.

This module sets up SQLAlchemy 2.0 with async support. Key components:

  - engine: The async database engine (connection pool for production DBs)
  - AsyncSessionLocal: Factory for creating async database sessions
  - Base: Declarative base class that all ORM models inherit from
  - Money: Column type for fixed-point amounts (4-digit scale)
  - get_db(): FastAPI dependency that provides a session per request

Architecture note:
  We use async SQLAlchemy (with aiosqlite for SQLite) so the API can handle
  concurrent requests without blocking. When migrating to PostgreSQL, only
  the DATABASE_URL needs to change (to use the asyncpg driver).

Session lifecycle:
  Each API request gets its own session via get_db(). The transaction
  processor commits its own unit of work before publishing events; get_db()
  commits whatever else is pending on success and rolls back on exception.
"""

from decimal import Decimal

from sqlalchemy import BigInteger
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from bank_ledger.config import settings


# Amounts carry four fractional digits (e.g. 12.3456 USD)
MONEY_SCALE = 4
MONEY_QUANTUM = Decimal(1).scaleb(-MONEY_SCALE)
_MONEY_FACTOR = 10 ** MONEY_SCALE


class Money(TypeDecorator):
    """
    Fixed-point decimal stored as an integer count of ten-thousandths.

    Why integers?
      SQLite has no exact DECIMAL type — NUMERIC values are stored as
      floats, so `balance + delta` evaluated inside an UPDATE could drift
      (0.3 - 0.1 - 0.2 != 0). Storing 100.0000 as 1000000 keeps every
      storage-level addition and comparison exact, on any backend.

    Python code only ever sees Decimal values quantized to 4 places. Values
    compared against or added to a Money column in an expression are
    coerced through the same conversion.
    """

    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        scaled = Decimal(value) * _MONEY_FACTOR
        if scaled != scaled.to_integral_value():
            raise ValueError(f"Amount {value} has more than {MONEY_SCALE} decimal places")
        return int(scaled)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return (Decimal(value) / _MONEY_FACTOR).quantize(MONEY_QUANTUM)


# Create the async engine.
# echo=True in debug mode logs all SQL statements — invaluable for development.
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
)

# Session factory: creates new AsyncSession instances.
# expire_on_commit=False prevents lazy-load errors after commit —
# without this, accessing attributes on a committed object would trigger
# a synchronous DB call, which fails in async context.
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    All models inherit from this class, which provides:
      - Metadata tracking for table creation and migrations
      - Common declarative mapping features
    """
    pass


async def get_db():
    """
    FastAPI dependency that provides a database session.

    Usage in a route:
        @router.get("/items")
        async def list_items(db: AsyncSession = Depends(get_db)):
            ...

    The session is committed on success and rolled back on any exception,
    then closed when the request completes. Failed financial operations
    leave nothing behind: the processor has already rolled back its own
    unit of work, and the rollback here discards anything else.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
