"""
Audit service — persists outcome events as transaction_audit rows.

Subscribed to the event bus as the "audit" consumer group. Each event is
written in its own session, independent of the request that produced it.

Idempotency:
  The bus may deliver an event more than once. transaction_id is UNIQUE,
  so a redelivery is detected (existing row, or an IntegrityError when two
  deliveries race) and skipped.
"""

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bank_ledger.events import TransactionEvent
from bank_ledger.models.transaction_audit import TransactionAudit

logger = structlog.get_logger(__name__)


class AuditLogger:
    """Event handler that writes one TransactionAudit row per transaction id."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def __call__(self, event: TransactionEvent) -> None:
        await self.record(event)

    async def record(self, event: TransactionEvent) -> bool:
        """
        Persist an event. Returns False if it had already been recorded.
        """
        async with self._session_factory() as db:
            existing = await db.execute(
                select(TransactionAudit.id).where(
                    TransactionAudit.transaction_id == event.transaction_id
                )
            )
            if existing.scalar_one_or_none() is not None:
                logger.info("audit_duplicate_skipped", transaction_id=event.transaction_id)
                return False

            db.add(
                TransactionAudit(
                    transaction_id=event.transaction_id,
                    from_account=event.from_account,
                    to_account=event.to_account,
                    amount=event.amount,
                    currency=event.currency,
                    type=event.type,
                    status=event.status,
                    description=event.description,
                    timestamp=event.timestamp,
                )
            )
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.info("audit_duplicate_skipped", transaction_id=event.transaction_id)
                return False

        logger.info(
            "transaction_audited",
            transaction_id=event.transaction_id,
            status=event.status,
        )
        return True


async def get_audit_entry(db: AsyncSession, transaction_id: str) -> TransactionAudit | None:
    """Look up the audit row for a transaction reference."""
    result = await db.execute(
        select(TransactionAudit).where(TransactionAudit.transaction_id == transaction_id)
    )
    return result.scalar_one_or_none()
