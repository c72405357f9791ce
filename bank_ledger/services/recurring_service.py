"""
Recurring payment scheduler.

Runs once a day at RECURRING_RUN_HOUR (UTC). Each run:

  1. Finds every recurring template with next_payment_date <= now
  2. For each one, in its own session, builds a fresh transaction request
     from the template and sends it through the normal transaction
     processor, as the owner of the paying account
  3. Records the outcome on the template. On success the template is
     advanced inside the payment's own unit of work, so the payment and
     the new next_payment_date commit together or not at all

Per-template state machine:

    due --success--> COMPLETED   last_payment_date = now
                                 next_payment_date = now + frequency
    due --failure--> FAILED      last_payment_date = now
                                 next_payment_date unchanged (retried next run)

One template failing (insufficient funds, closed account, anything else)
never stops the rest of the run. A failed attempt leaves no ledger row; it
is published as a FAILED outcome event so it is audited and the payer is
notified.

Frequency offsets are calendar-aware (dateutil.relativedelta), e.g. a
monthly payment run on Jan 31 next runs on Feb 28/29. Offsets are added to
the time of the successful run, so a late run shifts the schedule.
"""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import structlog
from dateutil.relativedelta import relativedelta
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bank_ledger.config import settings
from bank_ledger.events import EventPublisher, TransactionEvent
from bank_ledger.exceptions import BankAPIError
from bank_ledger.models.transaction import (
    Frequency,
    Transaction,
    TransactionStatus,
    generate_reference,
)
from bank_ledger.schemas.transaction import TransactionRequest
from bank_ledger.services import ledger_service, transaction_service

logger = structlog.get_logger(__name__)

FREQUENCY_OFFSETS: dict[Frequency, relativedelta] = {
    Frequency.DAILY: relativedelta(days=1),
    Frequency.WEEKLY: relativedelta(weeks=1),
    Frequency.MONTHLY: relativedelta(months=1),
    Frequency.QUARTERLY: relativedelta(months=3),
    Frequency.YEARLY: relativedelta(years=1),
}


def next_payment_date(frequency: Frequency, now: datetime) -> datetime:
    return now + FREQUENCY_OFFSETS[frequency]


def seconds_until_next_run(now: datetime, target_hour: int) -> float:
    """Seconds from `now` until the next occurrence of target_hour:00."""
    next_run = now.replace(hour=target_hour, minute=0, second=0, microsecond=0)
    if now >= next_run:
        next_run += timedelta(days=1)
    return (next_run - now).total_seconds()


def build_recurring_request(template: Transaction) -> TransactionRequest:
    """A one-off request equivalent to a single run of the template."""
    metadata = dict(template.meta or {})
    metadata.update(
        {
            "recurringTransactionId": template.reference,
            "isRecurringPayment": True,
        }
    )
    return TransactionRequest(
        from_account_number=template.from_account_number,
        to_account_number=template.to_account_number,
        amount=template.amount,
        currency=template.currency,
        transaction_type=template.transaction_type,
        description=f"Recurring payment: {template.description or ''}",
        metadata=metadata,
    )


@dataclass
class RecurringRunSummary:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    # Cancelled after the scan; not attempted
    skipped: int = 0


class RecurringPaymentScheduler:
    """Executes due recurring templates, once per run or on a daily loop."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        publisher: EventPublisher | None = None,
        run_hour: int | None = None,
    ):
        self._session_factory = session_factory
        self._publisher = publisher
        self._run_hour = run_hour if run_hour is not None else settings.RECURRING_RUN_HOUR
        self._task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # One run
    # ------------------------------------------------------------------

    async def run_once(self, now: datetime | None = None) -> RecurringRunSummary:
        """
        Process every template due at `now` (default: current UTC time).

        Returns:
            Counts of templates processed, succeeded and failed, plus those
            skipped because they were cancelled after the scan.
        """
        now = now or datetime.now(timezone.utc)
        summary = RecurringRunSummary()

        async with self._session_factory() as db:
            due = await ledger_service.find_due_recurring(db, now)
            due_ids = [template.id for template in due]

        logger.info("recurring_run_started", due=len(due_ids), now=now.isoformat())

        for template_id in due_ids:
            try:
                succeeded = await self._process_template(template_id, now)
            except Exception:
                # Recording the outcome itself failed; the template stays due
                logger.error(
                    "recurring_payment_unrecorded",
                    template_id=str(template_id),
                    exc_info=True,
                )
                succeeded = False
            if succeeded is None:
                summary.skipped += 1
                continue
            summary.processed += 1
            if succeeded:
                summary.succeeded += 1
            else:
                summary.failed += 1

        logger.info(
            "recurring_run_completed",
            processed=summary.processed,
            succeeded=summary.succeeded,
            failed=summary.failed,
            skipped=summary.skipped,
        )
        return summary

    async def _process_template(self, template_id: uuid.UUID, now: datetime) -> bool | None:
        """
        Run one template. Returns True on success, False on failure, and
        None if the template was cancelled after the scan.
        """
        async with self._session_factory() as db:
            template = await db.get(Transaction, template_id)
            if template is None or not template.recurring:
                return None

            payer = template.from_account or template.to_account

            async def advance_template(txn: Transaction) -> None:
                # Commits with the payment, so a paid run is never left due
                template.status = TransactionStatus.COMPLETED
                template.last_payment_date = now
                template.next_payment_date = next_payment_date(template.frequency, now)
                await db.flush()

            try:
                request = build_recurring_request(template)
                txn = await transaction_service.process_transaction(
                    db, request, payer.owner_id, self._publisher, advance_template
                )
            except Exception as exc:
                await self._record_failure(db, template_id, now, exc)
                return False

            logger.info(
                "recurring_payment_processed",
                template=template.reference,
                reference=txn.reference,
                next_payment_date=template.next_payment_date.isoformat(),
            )
            return True

    async def _record_failure(
        self,
        db: AsyncSession,
        template_id: uuid.UUID,
        now: datetime,
        exc: Exception,
    ) -> None:
        # The processor may have rolled back; start clean and reload
        await db.rollback()
        template = await db.get(Transaction, template_id, populate_existing=True)

        template.status = TransactionStatus.FAILED
        template.last_payment_date = now
        await db.commit()

        reason = exc.detail if isinstance(exc, BankAPIError) else "Unexpected error"
        if isinstance(exc, BankAPIError):
            logger.warning(
                "recurring_payment_failed",
                template=template.reference,
                reason=reason,
            )
        else:
            logger.error(
                "recurring_payment_failed",
                template=template.reference,
                reason=reason,
                exc_info=exc,
            )

        self._publish_failure(template, reason)

    def _publish_failure(self, template: Transaction, reason: str) -> None:
        if self._publisher is None:
            return
        # Each failed attempt gets its own id so every attempt is audited
        event = TransactionEvent(
            transaction_id=generate_reference(),
            from_account=template.from_account_number,
            to_account=template.to_account_number,
            amount=template.amount,
            currency=template.currency,
            type=template.transaction_type.value,
            status=TransactionStatus.FAILED.value,
            description=f"Recurring payment {template.reference} failed: {reason}",
            timestamp=datetime.now(timezone.utc),
        )
        try:
            self._publisher.publish(event)
        except Exception:
            logger.error(
                "transaction_event_publish_failed",
                reference=template.reference,
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # Daily loop
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run_forever())
        logger.info("recurring_scheduler_started", run_hour=self._run_hour)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("recurring_scheduler_stopped")

    async def _run_forever(self) -> None:
        while True:
            delay = seconds_until_next_run(datetime.now(timezone.utc), self._run_hour)
            logger.info("recurring_next_run_scheduled", seconds_until=delay)
            await asyncio.sleep(delay)
            try:
                await self.run_once()
            except Exception:
                logger.error("recurring_run_failed", exc_info=True)
