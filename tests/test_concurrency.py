"""
Concurrency tests for the balance-delta primitive and the processor.

Each worker uses its own session (and so its own database connection),
and all of them run at once on the event loop. The database is the only
thing keeping them consistent:

  - N concurrent deltas converge to balance0 + sum(deltas)
  - Concurrent debits never take an account below zero
  - Concurrent transfers conserve the total across accounts
"""

import asyncio
from decimal import Decimal

from bank_ledger.exceptions import InsufficientFundsError
from bank_ledger.models.transaction import TransactionType
from bank_ledger.schemas.transaction import TransactionRequest
from bank_ledger.services import account_service, transaction_service


async def _apply(session_factory, account_id, delta):
    async with session_factory() as db:
        try:
            await account_service.apply_delta(db, account_id, delta)
            await db.commit()
            return True
        except InsufficientFundsError:
            await db.rollback()
            return False


class TestConcurrentDeltas:
    async def test_deltas_converge(self, db_session, session_factory, make_user, make_account):
        owner = await make_user(db_session)
        account = await make_account(db_session, owner, balance="100.00")

        deltas = [Decimal("1.25")] * 10 + [Decimal("-0.75")] * 10
        results = await asyncio.gather(
            *(_apply(session_factory, account.id, delta) for delta in deltas)
        )
        assert all(results)

        async with session_factory() as fresh:
            balance = await account_service.get_balance(fresh, account.id)
        assert balance == Decimal("100.00") + sum(deltas)

    async def test_concurrent_debits_never_overdraw(
        self, db_session, session_factory, make_user, make_account
    ):
        owner = await make_user(db_session)
        account = await make_account(db_session, owner, balance="50.00")

        # Twelve debits of 10.00 against 50.00: exactly five can succeed
        results = await asyncio.gather(
            *(_apply(session_factory, account.id, Decimal("-10.00")) for _ in range(12))
        )
        assert results.count(True) == 5

        async with session_factory() as fresh:
            assert await account_service.get_balance(fresh, account.id) == Decimal("0")


class TestConcurrentTransfers:
    async def test_transfers_conserve_total(
        self, db_session, session_factory, make_user, make_account
    ):
        owner = await make_user(db_session)
        a = await make_account(db_session, owner, balance="100.00")
        b = await make_account(db_session, owner, balance="100.00")

        async def transfer(source, dest, amount):
            async with session_factory() as db:
                try:
                    await transaction_service.transfer(
                        db,
                        TransactionRequest(
                            from_account_number=source.account_number,
                            to_account_number=dest.account_number,
                            amount=Decimal(amount),
                            transaction_type=TransactionType.TRANSFER,
                        ),
                        owner.id,
                    )
                    return True
                except InsufficientFundsError:
                    return False

        jobs = [transfer(a, b, "15.00") for _ in range(5)]
        jobs += [transfer(b, a, "7.50") for _ in range(5)]
        await asyncio.gather(*jobs)

        async with session_factory() as fresh:
            balance_a = await account_service.get_balance(fresh, a.id)
            balance_b = await account_service.get_balance(fresh, b.id)
        assert balance_a + balance_b == Decimal("200.00")
        assert balance_a == Decimal("100.00") - 5 * Decimal("15.00") + 5 * Decimal("7.50")
