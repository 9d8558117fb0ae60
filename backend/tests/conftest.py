"""Pytest configuration and fixtures for testing."""

import pytest
from decimal import Decimal
from typing import AsyncGenerator
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from vehiclemarket.main import app
from vehiclemarket.database import Base, get_db
from vehiclemarket.core.identity import CurrentUser
from vehiclemarket.schemas.negotiation import LineItem
from vehiclemarket.services.negotiation_state_machine import ConversationRef


# In-memory database shared by every connection of one test
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

BUYER_ID = "buyer-1"
SELLER_ID = "seller-1"
ITEM_ID = "vehicle-1"


@pytest.fixture(scope="function")
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """
    Create a fresh database for each test.
    """
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Create all tables
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture(scope="function")
async def db(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Database session bound to the test database."""
    TestSessionLocal = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with TestSessionLocal() as session:
        yield session


@pytest.fixture
async def client(db: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """
    Create test client with database dependency override.
    """
    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def buyer() -> CurrentUser:
    return CurrentUser(user_id=BUYER_ID, role_type="buyer")


@pytest.fixture
def seller() -> CurrentUser:
    return CurrentUser(user_id=SELLER_ID, role_type="seller")


@pytest.fixture
def buyer_headers() -> dict:
    return {"X-User-Id": BUYER_ID, "X-User-Role": "buyer"}


@pytest.fixture
def seller_headers() -> dict:
    return {"X-User-Id": SELLER_ID, "X-User-Role": "seller"}


@pytest.fixture
def conversation_ref() -> ConversationRef:
    """Conversation used by tests that do not go through the database."""
    return ConversationRef(
        id=f"{BUYER_ID}_{SELLER_ID}_{ITEM_ID}_test",
        buyer_id=BUYER_ID,
        seller_id=SELLER_ID,
        item_id=ITEM_ID,
    )


def _make_item(item_id: str, price: str = "10000", quantity: int = 1, **overrides) -> LineItem:
    """Build a selected vehicle line item; defaults describe a white 2024 Corolla."""
    fields = {
        "id": item_id,
        "name": "Toyota Corolla",
        "brand": "Toyota",
        "model": "Corolla",
        "variant": "GLI",
        "color": "White",
        "year": 2024,
        "condition": "New",
        "body_type": "Sedan",
        "price": Decimal(price),
        "quantity": quantity,
        "seller_id": SELLER_ID,
        "seller_company": "Gulf Motors",
    }
    fields.update(overrides)
    return LineItem(**fields)


@pytest.fixture
def make_item():
    """Factory for line items."""
    return _make_item


@pytest.fixture
def corolla_items() -> list[LineItem]:
    """Three identical Corollas at 10,000 each."""
    return [_make_item(f"corolla-{n}") for n in range(1, 4)]


@pytest.fixture
async def conversation(client: AsyncClient, buyer_headers: dict) -> dict:
    """
    Start a negotiation as the buyer.

    Returns:
        Conversation data
    """
    response = await client.post(
        "/api/negotiations",
        headers=buyer_headers,
        json={"seller_id": SELLER_ID, "item_id": ITEM_ID}
    )
    assert response.status_code == 201
    return response.json()
