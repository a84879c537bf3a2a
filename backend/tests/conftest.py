"""
Pytest fixtures for testing.
"""
import pytest
import pytest_asyncio
from typing import AsyncGenerator, Awaitable, Callable

from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Import database module BEFORE app to allow override
import gigengine.database
from gigengine.database import Base
# Import ALL models so Base.metadata knows about all tables
from gigengine.models.user import User
from gigengine.models.gig import Gig, GigApplication, GigSkill
from gigengine.schemas.gig import GigCreate
from gigengine.services import gig_store
from gigengine.services.geo_index import GeoIndex

# Now import app (after we can override database)
from gigengine.main import app as fastapi_app


# Test database URL (use in-memory SQLite for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


def gig_payload(**overrides) -> dict:
    """JSON body for a valid posted gig; nested keys can be overridden wholesale."""
    payload = {
        "title": "Fix leaking kitchen tap",
        "description": "Kitchen tap drips constantly and needs a new washer fitted.",
        "category": "plumbing",
        "location": {
            "longitude": 77.5946,
            "latitude": 12.9716,
            "address": "12 MG Road, Bengaluru",
            "city": "Bengaluru",
        },
        "skills": [
            {"name": "Plumbing", "category": "trades", "proficiency": "intermediate"},
        ],
        "payment": {
            "rate": 500,
            "payment_type": "fixed",
            "payment_method": "upi",
        },
    }
    payload.update(overrides)
    return payload


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    """
    Create a fresh database for each test.
    Ensures cleanup happens even if test fails.
    """
    # Use StaticPool to keep single connection alive and reuse it
    # This ensures all sessions see the same in-memory database
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables FIRST
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    assert isinstance(test_engine.pool, StaticPool), f"Expected StaticPool, got {type(test_engine.pool)}"

    # THEN replace the app's engine and sessionmaker
    # This ensures get_db() uses sessions connected to DB with tables
    original_engine = gigengine.database.engine
    original_sessionmaker = gigengine.database.AsyncSessionLocal

    gigengine.database.engine = test_engine
    gigengine.database.AsyncSessionLocal = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )

    # Create session for direct test use
    async_session = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )

    session = async_session()

    try:
        yield session
    finally:
        try:
            await session.close()
        except Exception as e:
            print(f"Warning: Failed to close session: {e}")

        try:
            async with test_engine.begin() as conn:
                await conn.run_sync(Base.metadata.drop_all)
        except Exception as e:
            print(f"Warning: Failed to drop tables: {e}")

        try:
            await test_engine.dispose()
        except Exception as e:
            print(f"Warning: Failed to dispose engine: {e}")

        gigengine.database.engine = original_engine
        gigengine.database.AsyncSessionLocal = original_sessionmaker


@pytest.fixture
def geo_index() -> GeoIndex:
    """Fresh index installed on the app, so API writes land in it."""
    index = GeoIndex(cell_size_degrees=0.5)
    fastapi_app.state.geo_index = index
    return index


@pytest_asyncio.fixture
async def async_client(db: AsyncSession, geo_index: GeoIndex) -> AsyncGenerator[AsyncClient, None]:
    """
    Create an async HTTP client for testing endpoints.

    The db fixture already replaced gigengine.database.engine with test engine,
    so all endpoints will automatically use the test database.
    """
    transport = ASGITransport(app=fastapi_app)

    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        follow_redirects=True  # Follow 307 redirects for trailing slashes
    ) as client:
        yield client


async def _create_user(db: AsyncSession, email: str, full_name: str) -> User:
    user = User(email=email, full_name=full_name)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def poster(db: AsyncSession) -> User:
    return await _create_user(db, "poster@example.com", "Priya Poster")


@pytest_asyncio.fixture
async def applicant(db: AsyncSession) -> User:
    return await _create_user(db, "worker.one@example.com", "Arun Worker")


@pytest_asyncio.fixture
async def other_applicant(db: AsyncSession) -> User:
    return await _create_user(db, "worker.two@example.com", None)


@pytest.fixture
def login(async_client: AsyncClient) -> Callable[[User], AsyncClient]:
    """
    Switch the client's identity.

    Cookie contains just the user_id, as issued by the accounts service.
    """
    def _login(user: User) -> AsyncClient:
        async_client.cookies.set("auth_token", str(user.id))
        return async_client
    return _login


@pytest_asyncio.fixture
async def client(login, poster: User) -> AsyncClient:
    """Client authenticated as the poster."""
    return login(poster)


@pytest.fixture
def make_gig(db: AsyncSession) -> Callable[..., Awaitable[Gig]]:
    """Create a gig directly through the store, bypassing HTTP."""
    async def _make_gig(poster: User, now=None, **overrides) -> Gig:
        payload = GigCreate.model_validate(gig_payload(**overrides))
        return await gig_store.create_gig(db, poster.id, payload, now=now)
    return _make_gig
