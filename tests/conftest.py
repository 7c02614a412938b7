"""Pytest fixtures for database testing."""

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from price_sync.api.app import app
from price_sync.db.base import Base, get_db, get_session_factory
from price_sync.services.campaigns import CampaignCreate, create_campaign
from price_sync.services.catalog import ProductCreate, VariantCreate, create_product
from price_sync.services.membership import MembershipItem


# Use SQLite in-memory for tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Fixed evaluation time for service-level tests
NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory bound to a fresh in-memory database.

    StaticPool keeps a single connection so every session sees the same
    database. Overrides app's get_session_factory dependency.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    app.dependency_overrides[get_session_factory] = lambda: factory

    try:
        yield factory
    finally:
        app.dependency_overrides.pop(get_session_factory, None)

        # Drop all tables after test
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

        await engine.dispose()


@pytest_asyncio.fixture
async def test_db(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Provide a test database session.

    Overrides app's get_db dependency. Requests share this session and never
    commit; a failing request rolls it back.
    """
    async with session_factory() as session:
        # Override app's get_db dependency
        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

        app.dependency_overrides[get_db] = override_get_db

        try:
            yield session
        finally:
            # Clean up
            app.dependency_overrides.pop(get_db, None)
            await session.rollback()


@pytest.fixture
def make_product(test_db):
    """Factory creating a product through the catalog service.

    ``variant_prices`` creates one variant per price; without it the product
    is priced directly.
    """

    async def _make_product(
        slug: str,
        price: str | None = None,
        variant_prices: list[str] | None = None,
    ):
        variants = [
            VariantCreate(name=f"Variant {i + 1}", sku=f"{slug}-{i + 1}", price=Decimal(p))
            for i, p in enumerate(variant_prices or [])
        ]
        return await create_product(
            test_db,
            ProductCreate(
                slug=slug,
                name=slug.replace("-", " ").title(),
                price=Decimal(price) if price is not None else None,
                variants=variants,
            ),
            at=NOW,
        )

    return _make_product


@pytest.fixture
def make_campaign(test_db):
    """Factory creating a campaign active at NOW unless dates are given."""

    async def _make_campaign(
        name: str,
        *,
        percent: str | None = None,
        amount: str | None = None,
        fixed: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        is_active: bool = True,
        items: list[MembershipItem] | None = None,
    ):
        return await create_campaign(
            test_db,
            CampaignCreate(
                name=name,
                discount_percent=Decimal(percent) if percent is not None else None,
                discount_amount=Decimal(amount) if amount is not None else None,
                fixed_price=Decimal(fixed) if fixed is not None else None,
                start_date=start or NOW - timedelta(days=1),
                end_date=end or NOW + timedelta(days=1),
                is_active=is_active,
                items=items or [],
            ),
            at=NOW,
        )

    return _make_campaign
