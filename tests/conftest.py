"""
Pytest configuration and fixtures.
"""

import os
import sys
import uuid
from decimal import Decimal
from typing import AsyncGenerator

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "")
os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_secret")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Add app to path
sys.path.append(os.getcwd())

from app.database import Base, get_db
from app.fsm.states import PaymentStatus, PromotedPollStatus, TransactionStatus
from app.main import app
from app.models import PromotedPoll, Transaction
from app.services.paystack_service import PaystackService, get_paystack_service

# Use in-memory SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"
TEST_SECRET = os.environ["PAYSTACK_SECRET_KEY"]
ADMIN_HEADERS = {"X-Admin-Key": os.environ["ADMIN_API_KEY"]}


@pytest_asyncio.fixture
async def test_engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(TEST_DB_URL, echo=False, poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for a test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, bound to the test database."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_paystack_service] = lambda: PaystackService(secret_key=TEST_SECRET)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def promoted_poll(db) -> PromotedPoll:
    """Approved campaign waiting on payment."""
    promoted_poll = PromotedPoll(
        poll_id=uuid.uuid4(),
        sponsor_id=uuid.uuid4(),
        budget_amount=Decimal("50.00"),
        cost_per_vote=Decimal("0.50"),
        target_votes=100,
        status=PromotedPollStatus.ACTIVE.value,
        payment_status=PaymentStatus.PENDING.value,
    )
    db.add(promoted_poll)
    await db.commit()
    return promoted_poll


@pytest_asyncio.fixture
async def pending_transaction(db, promoted_poll) -> Transaction:
    """Pending transaction registered under reference ref_abc123."""
    transaction = Transaction(
        id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        promoted_poll_id=promoted_poll.id,
        amount=Decimal("50.00"),
        currency="NGN",
        payment_method="paystack",
        gateway_transaction_id="ref_abc123",
        status=TransactionStatus.PENDING.value,
        meta={"paystack_reference": "ref_abc123", "campaign": "launch"},
    )
    db.add(transaction)
    promoted_poll.transaction_id = transaction.id
    await db.commit()
    return transaction
