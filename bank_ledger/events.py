"""
Outcome events and the in-process event bus.

After the transaction processor commits a unit of work it publishes one
TransactionEvent describing the outcome. Publishing is fire-and-forget:

    bus.publish(event)   # enqueues and returns immediately, never raises

A background dispatcher task delivers every event to every subscribed
consumer group (audit persistence, notifications). Each group handles the
event independently: a failing handler is logged and does not affect the
other groups, the publisher, or the financial commit that produced the event.

Delivery semantics:
  Consumers must be idempotent (dedupe by transaction id). The bus itself
  does not retry; a consumer that needs retries owns them.

Lifecycle:
  start() creates the queue and dispatcher task on the running event loop;
  drain() waits until everything queued so far has been delivered; stop()
  drains and cancels the dispatcher. The FastAPI lifespan drives all three.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Awaitable, Callable, Protocol

import structlog
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from bank_ledger.models.transaction import Transaction, TransactionStatus

logger = structlog.get_logger(__name__)

TRANSACTIONS_TOPIC = "transactions"


class TransactionEvent(BaseModel):
    """
    Outcome of one processed transaction.

    Serialized with camelCase keys (transactionId, fromAccount, ...) via
    model_dump(by_alias=True). Accounts are account numbers; transactionId
    is the transaction reference.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    transaction_id: str
    from_account: str | None = None
    to_account: str | None = None
    amount: Decimal
    currency: str
    type: str
    status: str
    description: str | None = None
    timestamp: datetime


def build_transaction_event(
    txn: Transaction,
    status: TransactionStatus | None = None,
    description: str | None = None,
) -> TransactionEvent:
    """Describe a transaction row as an outcome event."""
    return TransactionEvent(
        transaction_id=txn.reference,
        from_account=txn.from_account_number,
        to_account=txn.to_account_number,
        amount=txn.amount,
        currency=txn.currency,
        type=txn.transaction_type.value,
        status=(status or txn.status).value,
        description=description if description is not None else txn.description,
        timestamp=datetime.now(timezone.utc),
    )


@dataclass
class EventEnvelope:
    """An event as it travels on the bus: topic, routing headers, payload."""
    topic: str
    event: TransactionEvent
    headers: dict[str, str] = field(default_factory=dict)


EventHandler = Callable[[TransactionEvent], Awaitable[None]]


class EventPublisher(Protocol):
    """What the transaction processor needs from an event sink."""

    def publish(self, event: TransactionEvent) -> None: ...


class EventBus:
    """Asyncio queue with named consumer groups and a single dispatcher task."""

    def __init__(self, max_queue_size: int = 10_000):
        self._max_queue_size = max_queue_size
        self._groups: dict[str, list[EventHandler]] = {}
        self._queue: asyncio.Queue[EventEnvelope] | None = None
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def subscribe(self, group: str, handler: EventHandler) -> None:
        """Register a handler under a consumer group name."""
        self._groups.setdefault(group, []).append(handler)
        logger.debug("event_handler_subscribed", group=group)

    def publish(self, event: TransactionEvent) -> None:
        """
        Enqueue an event for delivery. Never raises.

        Events published while the bus isn't running, or when the queue is
        full, are logged and dropped.
        """
        envelope = EventEnvelope(
            topic=TRANSACTIONS_TOPIC,
            event=event,
            headers={"transactionType": event.type},
        )
        if self._queue is None or not self.running:
            logger.warning(
                "event_dropped_bus_not_running",
                transaction_id=event.transaction_id,
            )
            return
        try:
            self._queue.put_nowait(envelope)
        except asyncio.QueueFull:
            logger.error("event_dropped_queue_full", transaction_id=event.transaction_id)
            return
        logger.debug(
            "event_published",
            topic=envelope.topic,
            transaction_id=event.transaction_id,
            transaction_type=event.type,
        )

    async def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self._max_queue_size)
        self._task = asyncio.create_task(self._dispatch_forever())
        logger.info("event_bus_started", groups=sorted(self._groups))

    async def drain(self) -> None:
        """Wait until every event queued so far has been delivered."""
        if self._queue is not None and self.running:
            await self._queue.join()

    async def stop(self) -> None:
        if self._task is None:
            return
        await self.drain()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self._queue = None
        logger.info("event_bus_stopped")

    async def _dispatch_forever(self) -> None:
        assert self._queue is not None
        while True:
            envelope = await self._queue.get()
            try:
                await self._deliver(envelope)
            finally:
                self._queue.task_done()

    async def _deliver(self, envelope: EventEnvelope) -> None:
        for group, handlers in self._groups.items():
            for handler in handlers:
                try:
                    await handler(envelope.event)
                except Exception:
                    logger.error(
                        "event_handler_failed",
                        group=group,
                        transaction_id=envelope.event.transaction_id,
                        exc_info=True,
                    )
