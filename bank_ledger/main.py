"""
FastAPI application and entry point.

This module wires the service together:
  1. Lifespan — logging, tables, event bus + consumers, notification
     sender, recurring scheduler (started on startup, stopped on shutdown)
  2. CORS middleware
  3. Exception handlers — domain errors to HTTP responses
  4. Routers — auth, accounts, transactions

Running locally:
    uvicorn bank_ledger.main:app --reload
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bank_ledger.config import settings
from bank_ledger.database import AsyncSessionLocal, Base, engine
from bank_ledger.events import EventBus
from bank_ledger.exceptions import register_exception_handlers
from bank_ledger.logging import setup_logging
from bank_ledger.routers import accounts, auth, transactions
from bank_ledger.services.audit_service import AuditLogger
from bank_ledger.services.notification_service import NotificationSender, TransactionNotifier
from bank_ledger.services.recurring_service import RecurringPaymentScheduler

logger = structlog.get_logger(__name__)


def build_event_bus(
    session_factory: async_sessionmaker[AsyncSession],
    sender: NotificationSender,
) -> EventBus:
    """An EventBus with the audit and notification consumer groups attached."""
    bus = EventBus(max_queue_size=settings.EVENT_QUEUE_SIZE)
    bus.subscribe("audit", AuditLogger(session_factory))
    bus.subscribe("notification", TransactionNotifier(session_factory, sender))
    return bus


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
      Creates missing tables (use migrations in production), then starts
      the event bus and, if enabled, the daily recurring payment loop.

    Shutdown:
      Stops the scheduler, drains and stops the bus, clears the
      notification rate limiter and disposes of the engine.
    """
    # --- Startup ---
    setup_logging()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    sender = NotificationSender()
    bus = build_event_bus(AsyncSessionLocal, sender)
    await bus.start()

    scheduler = RecurringPaymentScheduler(AsyncSessionLocal, publisher=bus)
    if settings.RECURRING_SCHEDULER_ENABLED:
        await scheduler.start()

    app.state.event_bus = bus
    app.state.notification_sender = sender
    app.state.recurring_scheduler = scheduler
    logger.info("application_started", version=settings.APP_VERSION)

    yield

    # --- Shutdown ---
    await scheduler.stop()
    await bus.stop()
    await sender.close()
    await engine.dispose()
    logger.info("application_stopped")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Ledger service: accounts, deposits, withdrawals, transfers "
                "and recurring payments",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(auth.router, prefix="/auth", tags=["Auth"])
app.include_router(accounts.router, prefix="/accounts", tags=["Accounts"])
app.include_router(transactions.router, prefix="/transactions", tags=["Transactions"])


@app.get("/health", tags=["Health"])
async def health_check():
    """Liveness probe for load balancers and orchestrators."""
    return {"status": "ok", "version": settings.APP_VERSION}
