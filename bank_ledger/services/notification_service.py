"""
Notification service — rate-limited outbound messages to account owners.

Two pieces live here:

NotificationSender
  send(recipient, subject, body) hands a message to a transport. It never
  raises to the caller. A send is silently dropped (logged at warning) when
    - the address is malformed, or
    - the recipient already got NOTIFICATION_MAX_PER_WINDOW messages within
      the last NOTIFICATION_WINDOW_SECONDS (rolling window).
  The per-recipient history belongs to the sender instance and is guarded
  by an asyncio.Lock. The app creates one sender at startup and closes it
  at shutdown. The default transport just logs the message; SMTP or a
  provider API plugs in as another transport callable.

TransactionNotifier
  The "notification" consumer group on the event bus. COMPLETED events
  produce a "Transaction Notification", FAILED events a "Transaction
  Failed" message, addressed to the owner of the paying account (the
  destination for deposits). Account numbers are masked to their last four
  digits.
"""

import asyncio
import re
import time
from collections import deque
from typing import Awaitable, Callable

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bank_ledger.config import settings
from bank_ledger.events import TransactionEvent
from bank_ledger.models.account import Account
from bank_ledger.models.transaction import TransactionStatus
from bank_ledger.models.user import User

logger = structlog.get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9+_.-]+@(.+)$")

Transport = Callable[[str, str, str], Awaitable[None]]


async def log_transport(recipient: str, subject: str, body: str) -> None:
    """Default transport: write the message to the log instead of sending it."""
    logger.info("notification_delivered", recipient=recipient, subject=subject, body=body)


def mask_account_number(account_number: str | None) -> str:
    """'CHK0482913375' -> '****3375'."""
    if not account_number:
        return "N/A"
    if len(account_number) <= 4:
        return account_number
    return "****" + account_number[-4:]


def is_valid_email(address: str | None) -> bool:
    return bool(address) and EMAIL_PATTERN.match(address) is not None


class NotificationSender:
    def __init__(
        self,
        transport: Transport | None = None,
        max_per_window: int | None = None,
        window_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._transport = transport or log_transport
        self._max_per_window = (
            max_per_window if max_per_window is not None
            else settings.NOTIFICATION_MAX_PER_WINDOW
        )
        self._window_seconds = (
            window_seconds if window_seconds is not None
            else settings.NOTIFICATION_WINDOW_SECONDS
        )
        self._clock = clock
        self._sent: dict[str, deque[float]] = {}
        self._lock = asyncio.Lock()

    async def _acquire(self, recipient: str) -> bool:
        """Claim a slot in the recipient's window, if one is free."""
        async with self._lock:
            now = self._clock()
            history = self._sent.setdefault(recipient, deque())
            while history and now - history[0] >= self._window_seconds:
                history.popleft()
            if len(history) >= self._max_per_window:
                return False
            history.append(now)
            return True

    async def send(self, recipient: str, subject: str, body: str) -> bool:
        """
        Deliver a message. Returns True if it was handed to the transport.

        Never raises: invalid addresses, rate-limited recipients and
        transport errors are logged and reported as False.
        """
        if not is_valid_email(recipient):
            logger.warning("notification_invalid_recipient", recipient=recipient)
            return False

        if not await self._acquire(recipient):
            logger.warning("notification_rate_limited", recipient=recipient)
            return False

        try:
            await self._transport(recipient, subject, body)
        except Exception:
            logger.error(
                "notification_send_failed",
                recipient=recipient,
                subject=subject,
                exc_info=True,
            )
            return False
        return True

    def reset(self) -> None:
        """Forget all per-recipient send history."""
        self._sent.clear()

    async def close(self) -> None:
        async with self._lock:
            self.reset()
        logger.info("notification_sender_closed")


class TransactionNotifier:
    """Event handler that notifies the paying account's owner of each outcome."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        sender: NotificationSender,
    ):
        self._session_factory = session_factory
        self._sender = sender

    async def __call__(self, event: TransactionEvent) -> None:
        if event.status == TransactionStatus.COMPLETED.value:
            subject = "Transaction Notification"
            body = self._completed_body(event)
        elif event.status == TransactionStatus.FAILED.value:
            subject = "Transaction Failed"
            body = self._failed_body(event)
        else:
            return

        recipient = await self._recipient_for(event)
        if recipient is None:
            logger.warning("notification_no_recipient", transaction_id=event.transaction_id)
            return
        await self._sender.send(recipient, subject, body)

    async def _recipient_for(self, event: TransactionEvent) -> str | None:
        account_number = event.from_account or event.to_account
        if account_number is None:
            return None
        async with self._session_factory() as db:
            result = await db.execute(
                select(User.email)
                .join(Account, Account.owner_id == User.id)
                .where(Account.account_number == account_number)
            )
            return result.scalar_one_or_none()

    @staticmethod
    def _completed_body(event: TransactionEvent) -> str:
        return (
            "Your transaction has been processed.\n\n"
            f"Reference: {event.transaction_id}\n"
            f"Type: {event.type}\n"
            f"Amount: {event.amount} {event.currency}\n"
            f"From: {mask_account_number(event.from_account)}\n"
            f"To: {mask_account_number(event.to_account)}\n"
            f"Description: {event.description or ''}\n"
            f"Date: {event.timestamp.isoformat()}\n"
        )

    @staticmethod
    def _failed_body(event: TransactionEvent) -> str:
        return (
            "We were unable to process your transaction.\n\n"
            f"Reference: {event.transaction_id}\n"
            f"Type: {event.type}\n"
            f"Amount: {event.amount} {event.currency}\n"
            f"Details: {event.description or ''}\n"
            "Please check your account balance and try again.\n"
        )
