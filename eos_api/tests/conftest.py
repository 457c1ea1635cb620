"""
Test configuration for the EOS API.

Every test gets a fresh in-memory SQLite database built from the ORM metadata
(no Alembic, no PostgreSQL). The app's get_db / get_session_factory
dependencies are pointed at it, Redis is disabled, and the payment and SMS
gateways are AsyncMock fakes the tests can inspect.

The ASGI transport does not run the lifespan, so nothing here touches the
real Stripe, Twilio or Redis clients.
"""
import uuid
from datetime import date
from typing import Any
from unittest.mock import AsyncMock

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import eos_api.models  # noqa: F401  registers every table on Base.metadata
from eos_api.database import Base, get_db, get_session_factory
from eos_api.main import app
from eos_api.models.objective_session import PENDING, ObjectiveSessionORM
from eos_api.models.recipient import RecipientORM
from eos_api.models.user import UserORM
from eos_api.security import create_access_token, hash_password


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


# ---------------------------------------------------------------------------
# Gateway fakes
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def payments() -> AsyncMock:
    fake = AsyncMock()
    fake.create_customer.return_value = "cus_test"
    fake.create_payee_account.return_value = "acct_test"
    fake.transfer.return_value = "tr_test"
    fake.create_payment_intent.return_value = {
        "id": "pi_test",
        "client_secret": "pi_test_secret_123",
        "amount": 0,
    }
    return fake


@pytest_asyncio.fixture
async def messaging() -> AsyncMock:
    fake = AsyncMock()
    fake.send_sms.return_value = "SM_test"
    return fake


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(session_factory, payments, messaging):
    """Async httpx client using ASGI transport — no live server needed."""

    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.state.payments = payments
    app.state.messaging = messaging
    app.state.redis = None

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def auth():
    """auth(user_id) → Authorization header dict carrying a valid token."""

    def _headers(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}

    return _headers


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def make_user(session_factory):
    async def _make(password: str | None = None, **overrides: Any) -> UserORM:
        values: dict[str, Any] = {
            "email": f"user-{uuid.uuid4().hex[:8]}@example.com",
            "full_name": "Test User",
            "balance_cents": 0,
            "objective_type": "pushups",
            "objective_count": 50,
            "objective_schedule": "daily",
            "objective_deadline": "09:00",
            "timezone": "America/New_York",
            "missed_goal_payout_cents": 500,
            "payout_committed": True,
        }
        values.update(overrides)
        if password is not None:
            values["password_hash"] = hash_password(password)
        async with session_factory() as session:
            user = UserORM(**values)
            session.add(user)
            await session.commit()
        return user

    return _make


@pytest_asyncio.fixture
async def make_session(session_factory):
    async def _make(user: UserORM, session_date: date, **overrides: Any) -> ObjectiveSessionORM:
        values: dict[str, Any] = {
            "user_id": user.id,
            "session_date": session_date,
            "objective_type": user.objective_type,
            "target_count": user.objective_count,
            "completed_count": 0,
            "deadline": user.objective_deadline,
            "status": PENDING,
            "payout_amount_cents": user.missed_goal_payout_cents,
            "payout_triggered": False,
        }
        values.update(overrides)
        async with session_factory() as session:
            row = ObjectiveSessionORM(**values)
            session.add(row)
            await session.commit()
        return row

    return _make


@pytest_asyncio.fixture
async def make_recipient(session_factory):
    async def _make(**overrides: Any) -> RecipientORM:
        values: dict[str, Any] = {
            "type": "individual",
            "name": "Recipient",
            "email": f"recipient-{uuid.uuid4().hex[:8]}@example.com",
            "phone": None,
        }
        values.update(overrides)
        async with session_factory() as session:
            recipient = RecipientORM(**values)
            session.add(recipient)
            await session.commit()
        return recipient

    return _make
