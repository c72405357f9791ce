"""
Tests for accounts: the HTTP endpoints and the account store itself.

These tests verify:
  - Account creation (number format, opening balance, validation)
  - Ownership scoping (403 for someone else's account, 404 for unknown)
  - The balance summary (stored vs computed from completed transactions)
  - Closing: only the owner, only at zero balance, and it is final
  - apply_delta: the single atomic balance mutation and its failure modes
"""

import re
import uuid
from decimal import Decimal

import pytest

from bank_ledger.exceptions import (
    AccountNotFoundError,
    InsufficientFundsError,
    InvalidOperationError,
    UnauthorizedAccessError,
)
from bank_ledger.models.account import AccountStatus, AccountType
from bank_ledger.services import account_service


# ---------------------------------------------------------------------------
# HTTP: creation and retrieval
# ---------------------------------------------------------------------------

class TestCreateAccount:
    """Tests for POST /accounts."""

    async def test_create_default_checking(self, authenticated_client):
        response = await authenticated_client.post("/accounts", json={})
        assert response.status_code == 201
        data = response.json()
        assert data["account_type"] == "CHECKING"
        assert data["status"] == "ACTIVE"
        assert data["currency"] == "USD"
        assert Decimal(data["balance"]) == Decimal("0")
        assert re.fullmatch(r"CHK\d{10}", data["account_number"])

    async def test_account_number_prefix_follows_type(self, authenticated_client):
        expected = {"SAVINGS": "SAV", "BUSINESS": "BUS", "INVESTMENT": "INV"}
        for account_type, prefix in expected.items():
            response = await authenticated_client.post(
                "/accounts", json={"account_type": account_type}
            )
            assert response.status_code == 201
            assert re.fullmatch(rf"{prefix}\d{{10}}", response.json()["account_number"])

    async def test_account_numbers_are_unique(self, authenticated_client):
        numbers = set()
        for _ in range(5):
            response = await authenticated_client.post("/accounts", json={})
            numbers.add(response.json()["account_number"])
        assert len(numbers) == 5

    async def test_initial_balance_recorded_as_opening_deposit(self, authenticated_client):
        response = await authenticated_client.post(
            "/accounts", json={"initial_balance": "250.50"}
        )
        assert response.status_code == 201
        account = response.json()
        assert Decimal(account["balance"]) == Decimal("250.50")

        history = await authenticated_client.get(f"/accounts/{account['id']}/transactions")
        txns = history.json()
        assert len(txns) == 1
        assert txns[0]["transaction_type"] == "DEPOSIT"
        assert txns[0]["status"] == "COMPLETED"
        assert Decimal(txns[0]["amount"]) == Decimal("250.50")

        balance = await authenticated_client.get(f"/accounts/{account['id']}/balance")
        assert balance.json()["match"] is True

    async def test_negative_initial_balance_rejected(self, authenticated_client):
        response = await authenticated_client.post(
            "/accounts", json={"initial_balance": "-1.00"}
        )
        assert response.status_code == 422

    async def test_invalid_currency_rejected(self, authenticated_client):
        response = await authenticated_client.post("/accounts", json={"currency": "usd"})
        assert response.status_code == 422


class TestAccountAccess:
    """Ownership scoping on the read endpoints."""

    async def test_list_only_own_accounts(self, client, auth_headers, second_user_headers):
        await client.post("/accounts", json={}, headers=auth_headers)
        await client.post("/accounts", json={}, headers=auth_headers)
        await client.post("/accounts", json={}, headers=second_user_headers)

        mine = await client.get("/accounts", headers=auth_headers)
        theirs = await client.get("/accounts", headers=second_user_headers)
        assert len(mine.json()) == 2
        assert len(theirs.json()) == 1

    async def test_other_users_account_forbidden(
        self, client, auth_headers, second_user_headers
    ):
        created = await client.post("/accounts", json={}, headers=auth_headers)
        account_id = created.json()["id"]

        for path in ("", "/balance", "/transactions"):
            response = await client.get(
                f"/accounts/{account_id}{path}", headers=second_user_headers
            )
            assert response.status_code == 403, path
            assert response.json()["error_type"] == "unauthorized_access"

    async def test_unknown_account_not_found(self, authenticated_client):
        response = await authenticated_client.get(f"/accounts/{uuid.uuid4()}")
        assert response.status_code == 404
        assert response.json()["error_type"] == "not_found"


class TestCloseAccount:
    """Tests for POST /accounts/{id}/close."""

    async def test_close_zero_balance_account(self, authenticated_client):
        created = await authenticated_client.post("/accounts", json={})
        account_id = created.json()["id"]

        response = await authenticated_client.post(f"/accounts/{account_id}/close")
        assert response.status_code == 200
        assert response.json()["status"] == "CLOSED"

    async def test_cannot_close_with_balance(self, authenticated_client):
        created = await authenticated_client.post(
            "/accounts", json={"initial_balance": "10.00"}
        )
        response = await authenticated_client.post(f"/accounts/{created.json()['id']}/close")
        assert response.status_code == 400
        assert "non-zero balance" in response.json()["detail"]

    async def test_cannot_close_twice(self, authenticated_client):
        created = await authenticated_client.post("/accounts", json={})
        account_id = created.json()["id"]
        await authenticated_client.post(f"/accounts/{account_id}/close")

        response = await authenticated_client.post(f"/accounts/{account_id}/close")
        assert response.status_code == 400

    async def test_cannot_close_someone_elses_account(
        self, client, auth_headers, second_user_headers
    ):
        created = await client.post("/accounts", json={}, headers=auth_headers)
        response = await client.post(
            f"/accounts/{created.json()['id']}/close", headers=second_user_headers
        )
        assert response.status_code == 403

    async def test_closed_account_rejects_deposits(self, authenticated_client):
        created = await authenticated_client.post("/accounts", json={})
        account = created.json()
        await authenticated_client.post(f"/accounts/{account['id']}/close")

        response = await authenticated_client.post(
            "/transactions/deposit",
            json={"to_account_number": account["account_number"], "amount": "5.00"},
        )
        assert response.status_code == 400
        assert "closed" in response.json()["detail"]


# ---------------------------------------------------------------------------
# Service level: the account store
# ---------------------------------------------------------------------------

class TestAccountStore:
    async def test_generate_account_number(self):
        account_id = uuid.UUID(int=1234567)
        assert (
            account_service.generate_account_number(AccountType.SAVINGS, account_id)
            == "SAV0001234567"
        )

    async def test_get_balance(self, db_session, make_user, make_account):
        owner = await make_user(db_session)
        account = await make_account(db_session, owner, balance="42.1234")

        assert await account_service.get_balance(db_session, account.id) == Decimal("42.1234")

    async def test_get_balance_unknown_account(self, db_session):
        with pytest.raises(AccountNotFoundError):
            await account_service.get_balance(db_session, uuid.uuid4())

    async def test_is_owner(self, db_session, make_user, make_account):
        owner = await make_user(db_session)
        other = await make_user(db_session, email="other@example.com")
        account = await make_account(db_session, owner)

        assert await account_service.is_owner(db_session, account.id, owner.id) is True
        assert await account_service.is_owner(db_session, account.id, other.id) is False
        assert await account_service.is_owner(db_session, uuid.uuid4(), owner.id) is False

    async def test_get_account_checks_owner(self, db_session, make_user, make_account):
        owner = await make_user(db_session)
        other = await make_user(db_session, email="other@example.com")
        account = await make_account(db_session, owner)

        with pytest.raises(UnauthorizedAccessError):
            await account_service.get_account(db_session, account.id, other.id)


class TestApplyDelta:
    """The atomic conditional balance update."""

    async def test_credit_and_debit(self, db_session, make_user, make_account):
        owner = await make_user(db_session)
        account = await make_account(db_session, owner, balance="100.00")

        assert await account_service.apply_delta(
            db_session, account.id, Decimal("25.50")
        ) == Decimal("125.50")
        assert await account_service.apply_delta(
            db_session, account.id, Decimal("-125.50")
        ) == Decimal("0")
        await db_session.commit()

        # The loaded instance follows the database
        assert account.balance == Decimal("0")

    async def test_overdraw_rejected(self, db_session, make_user, make_account):
        owner = await make_user(db_session)
        account = await make_account(db_session, owner, balance="10.00")

        with pytest.raises(InsufficientFundsError) as exc_info:
            await account_service.apply_delta(db_session, account.id, Decimal("-10.01"))
        assert exc_info.value.requested == Decimal("10.01")
        assert exc_info.value.available == Decimal("10.00")

        await db_session.rollback()
        assert await account_service.get_balance(db_session, account.id) == Decimal("10.00")

    async def test_unknown_account(self, db_session):
        with pytest.raises(AccountNotFoundError):
            await account_service.apply_delta(db_session, uuid.uuid4(), Decimal("1"))

    async def test_closed_account(self, db_session, make_user, make_account):
        owner = await make_user(db_session)
        account = await make_account(db_session, owner)
        await account_service.close_account(db_session, account.id, owner.id)
        await db_session.commit()
        assert account.status == AccountStatus.CLOSED

        with pytest.raises(InvalidOperationError, match="closed"):
            await account_service.apply_delta(db_session, account.id, Decimal("1"))

    async def test_sub_unit_precision_is_exact(self, db_session, make_user, make_account):
        """Ten deposits of 0.1 add up to exactly 1."""
        owner = await make_user(db_session)
        account = await make_account(db_session, owner)

        for _ in range(10):
            await account_service.apply_delta(db_session, account.id, Decimal("0.1"))
        await db_session.commit()

        assert await account_service.get_balance(db_session, account.id) == Decimal("1.0000")
