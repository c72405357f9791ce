"""
Test fixtures for the ledger test suite.

  - db_engine / session_factory / db_session: a fresh SQLite database
    file per test
  - event_bus / sent_messages: a running EventBus wired to the real audit
    and notification consumers, with a recording notification transport
  - client: async HTTP client with get_db overridden and the bus installed
  - authenticated_client / auth_headers: a registered user's JWT
  - second_user_headers: a second user for cross-user checks
  - make_user / make_account: service-level builders

SECRET_KEY must exist before bank_ledger.config is imported, so it is set
at the top of this module.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")

from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from bank_ledger.database import Base, get_db
from bank_ledger.main import app, build_event_bus
from bank_ledger.models.account import AccountType
from bank_ledger.models.user import User
from bank_ledger.security import hash_password
from bank_ledger.services import account_service
from bank_ledger.services.notification_service import NotificationSender


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """
    Create a fresh database with all tables for each test.

    A temporary file rather than :memory: so every session gets its own
    connection: request sessions, event consumers and concurrent workers
    then interleave at the database the way they do in production.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def sent_messages():
    """Messages handed to the notification transport: (recipient, subject, body)."""
    return []


@pytest.fixture
def notification_sender(sent_messages):
    async def record(recipient, subject, body):
        sent_messages.append((recipient, subject, body))

    return NotificationSender(transport=record, max_per_window=100, window_seconds=3600)


@pytest_asyncio.fixture
async def event_bus(session_factory, notification_sender):
    bus = build_event_bus(session_factory, notification_sender)
    await bus.start()
    yield bus
    await bus.stop()


@pytest_asyncio.fixture
async def client(session_factory, event_bus):
    """
    Async HTTP test client against the test database.

    httpx's ASGITransport doesn't run the app lifespan, so the event bus
    the lifespan would create is installed on app.state here.
    """

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.state.event_bus = event_bus

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
    del app.state.event_bus


async def _signup(client, email: str, first_name: str) -> dict:
    response = await client.post(
        "/auth/signup",
        json={
            "email": email,
            "password": "SecurePass123!",
            "first_name": first_name,
            "last_name": "User",
        },
    )
    assert response.status_code == 201, f"Signup failed: {response.text}"
    return {"Authorization": f"Bearer {response.json()['token']}"}


@pytest_asyncio.fixture
async def auth_headers(client):
    return await _signup(client, "testuser@example.com", "Test")


@pytest_asyncio.fixture
async def second_user_headers(client):
    return await _signup(client, "seconduser@example.com", "Second")


@pytest_asyncio.fixture
async def authenticated_client(client, auth_headers):
    """Test client that sends the first user's token on every request."""
    client.headers.update(auth_headers)
    return client


# ---------------------------------------------------------------------------
# Service-level builders
# ---------------------------------------------------------------------------

@pytest.fixture
def make_user():
    async def _make_user(db, email="owner@example.com", first_name="Owner"):
        user = User(
            email=email,
            hashed_password=hash_password("SecurePass123!"),
            first_name=first_name,
            last_name="User",
        )
        db.add(user)
        await db.commit()
        return user

    return _make_user


@pytest.fixture
def make_account():
    async def _make_account(
        db,
        owner,
        balance="0",
        account_type=AccountType.CHECKING,
        currency="USD",
    ):
        account = await account_service.create_account(
            db,
            owner_id=owner.id,
            account_type=account_type,
            currency=currency,
            initial_balance=Decimal(balance),
        )
        await db.commit()
        return account

    return _make_account
