import itertools
import os
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Dict, Optional

# Service clock for every test; must be set before settings are first read
os.environ["TIMEZONE"] = "UTC"

import pytest
import pytest_asyncio
from sqlalchemy import event, func, select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.models.category import Category
from app.models.transaction import Transaction


# Use SQLite for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

USER_ID = "user-1"
OTHER_USER_ID = "user-2"

# Reference "now" used by time-dependent tests: Monday 19 October 2026
NOW = datetime(2026, 10, 19, 14, 30, tzinfo=timezone.utc)


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    # SAVEPOINT support for pysqlite-based drivers: let SQLAlchemy emit BEGIN
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session_maker = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with async_session_maker() as session:
        yield session


@pytest.fixture
def make_category(test_session: AsyncSession):
    """Factory for categories with strictly increasing created_at."""
    created = itertools.count()
    base = datetime(2025, 1, 1, tzinfo=timezone.utc)

    async def _make(
        name: str,
        user_id: str = USER_ID,
        type: str = "expense",
        id: Optional[str] = None,
    ) -> Category:
        category = Category(
            id=id or str(uuid.uuid4()),
            user_id=user_id,
            name=name,
            type=type,
            created_at=base + timedelta(minutes=next(created)),
        )
        test_session.add(category)
        await test_session.flush()
        return category

    return _make


@pytest.fixture
def make_transaction(test_session: AsyncSession):
    """Factory for transactions; category_id is stored as given, unchecked."""

    async def _make(
        amount,
        date_time: datetime,
        category_id: Optional[str],
        user_id: str = USER_ID,
        vendor_name: str = "Corner Shop",
    ) -> Transaction:
        transaction = Transaction(
            id=str(uuid.uuid4()),
            user_id=user_id,
            vendor_name=vendor_name,
            description=f"{vendor_name} purchase",
            date_time=date_time,
            amount=Decimal(str(amount)),
            payment_type="Credit Card",
            category_id=category_id,
        )
        test_session.add(transaction)
        await test_session.flush()
        return transaction

    return _make


async def transaction_counts(session: AsyncSession, user_id: str = USER_ID) -> Dict[Optional[str], int]:
    """category_id -> number of the user's transactions, read straight from the table."""
    result = await session.execute(
        select(Transaction.category_id, func.count(Transaction.id))
        .where(Transaction.user_id == user_id)
        .group_by(Transaction.category_id)
    )
    return {category_id: count for category_id, count in result.all()}


async def category_names(session: AsyncSession, user_id: str = USER_ID) -> Dict[str, str]:
    """category id -> name for the user, read straight from the table."""
    result = await session.execute(
        select(Category.id, Category.name).where(Category.user_id == user_id)
    )
    return {category_id: name for category_id, name in result.all()}
