"""
Test fixtures for the ledger API test suite.

This module provides shared fixtures used across all test files:

  - db_engine / session_factory / db_session: Fresh in-memory SQLite
    database for each test, with foreign keys enforced
  - make_client: Factory for async HTTP test clients (one cookie jar each)
  - client: A single unauthenticated client
  - register_user: Registers a user through the real two-factor flow
  - authenticated_client / second_authenticated_client: Two members with
    live session cookies, for ownership tests
  - user / other_user: Users created directly in the database for
    service-level tests
  - reset_rate_limiter (autouse): auth attempt counts live in process
    memory, so every test starts with an empty limiter

Key design decisions:
  - SECRET_KEY, DATA_ENCRYPTION_KEY and the external API key are given test
    values BEFORE the application is imported, because settings are read
    at import time.
  - We override FastAPI's get_db dependency to inject test sessions, so the
    application code works exactly as it does in production.
  - Authenticated clients are built via register -> TOTP verify, using
    pyotp to compute the current code from the returned manual code.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DATA_ENCRYPTION_KEY", "test-data-encryption-key")
os.environ.setdefault("EXTERNAL_PAYMENTS_API_KEY", "test-external-api-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import pyotp
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from bankledger.database import Base, enable_sqlite_foreign_keys, get_db
from bankledger.main import app
from bankledger.models.user import User
from bankledger.rate_limit import rate_limiter
from bankledger.security import hash_password


# In-memory SQLite for fast, isolated tests
TEST_DATABASE_URL = "sqlite+aiosqlite://"

EXTERNAL_API_KEY = os.environ["EXTERNAL_PAYMENTS_API_KEY"]


def totp_for(manual_code: str) -> pyotp.TOTP:
    """The authenticator-app view of a secret shown as 'ABCD EFGH ...'."""
    return pyotp.TOTP(manual_code.replace(" ", ""))


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    rate_limiter.reset()
    yield
    rate_limiter.reset()


@pytest_asyncio.fixture
async def db_engine():
    """Create a fresh async engine with all tables for each test."""
    engine = create_async_engine(TEST_DATABASE_URL)
    enable_sqlite_foreign_keys(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Provide an async session bound to the test engine."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def make_client(session_factory):
    """
    Factory for async HTTP test clients sharing the test database.

    Each client keeps its own cookies, so two clients behave like two
    browsers logged in as different users.
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
    clients: list[AsyncClient] = []

    async def _make() -> AsyncClient:
        ac = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        clients.append(ac)
        return ac

    yield _make

    for ac in clients:
        await ac.aclose()
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(make_client):
    return await make_client()


@pytest.fixture
def register_user():
    """
    Register a user and complete two-factor setup on the given client.

    Returns the registration payload plus the user's pyotp.TOTP, so tests
    can produce valid codes later (e.g. to log in again).
    """

    async def _register(client: AsyncClient, username: str, email: str, password: str = "SecurePass123!"):
        response = await client.post(
            "/auth/register",
            json={"username": username, "email": email, "password": password},
        )
        assert response.status_code == 201, f"Register failed: {response.text}"
        data = response.json()
        totp = totp_for(data["twoFactor"]["manualCode"])

        verify = await client.post("/auth/two-factor/verify", json={"code": totp.now()})
        assert verify.status_code == 200, f"Verify failed: {verify.text}"
        data["totp"] = totp
        data["session_token"] = verify.json()["token"]
        return data

    return _register


@pytest_asyncio.fixture
async def authenticated_client(make_client, register_user):
    """Client with a session cookie for user 'alice'."""
    ac = await make_client()
    await register_user(ac, "alice", "alice@example.com")
    return ac


@pytest_asyncio.fixture
async def second_authenticated_client(make_client, register_user):
    """A second member ('bob') for cross-user authorization tests."""
    ac = await make_client()
    await register_user(ac, "bob", "bob@example.com", "SecurePass456!")
    return ac


@pytest_asyncio.fixture
async def external_client(make_client):
    """Client presenting the shared interbank API key."""
    ac = await make_client()
    ac.headers["X-External-Api-Key"] = EXTERNAL_API_KEY
    return ac


# ---------------------------------------------------------------------------
# Service-level fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def user(db_session):
    u = User(username="carol", email="carol@example.com", hashed_password=hash_password("SecurePass123!"))
    db_session.add(u)
    await db_session.commit()
    return u


@pytest_asyncio.fixture
async def other_user(db_session):
    u = User(username="dave", email="dave@example.com", hashed_password=hash_password("SecurePass123!"))
    db_session.add(u)
    await db_session.commit()
    return u
