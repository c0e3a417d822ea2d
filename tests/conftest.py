"""Test fixtures — a fresh in-memory database and push registry per test.

Pattern:
1. Each test gets its own aiosqlite in-memory engine (StaticPool keeps
   the single connection alive) with tables created from the models.
2. The app's get_db dependency is overridden to hand out that session.
3. app.state.push_registry is swapped for a fresh PushRegistry so
   sessions never leak between tests.

Users 7, 9 and 42 exist in every test database; user 1 is an admin.
"""

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from smartflow.db.engine import get_db
from smartflow.db.models import Base, User
from smartflow.main import app
from smartflow.realtime.registry import PushRegistry


TEST_DB_URL = "sqlite+aiosqlite://"

ADMIN_ID = 1
CALLER_ID = 7

SEED_USERS = [
    {"id": 1, "username": "admin", "email": "admin@smartflow.test",
     "full_name": "Ada Admin", "role": "admin"},
    {"id": 7, "username": "seven", "email": "seven@smartflow.test",
     "full_name": "Sam Seven"},
    {"id": 9, "username": "nine", "email": "nine@smartflow.test",
     "full_name": "Nia Nine"},
    {"id": 42, "username": "answer", "email": "answer@smartflow.test",
     "full_name": "Arthur Dent"},
]


@pytest_asyncio.fixture()
async def db_session():
    """Per-test session on a brand-new in-memory database."""
    engine = create_async_engine(
        TEST_DB_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session = AsyncSession(bind=engine, expire_on_commit=False)
    session.add_all([User(**u) for u in SEED_USERS])
    await session.commit()

    try:
        yield session
    finally:
        await session.close()
        await engine.dispose()


@pytest_asyncio.fixture()
async def registry():
    """Fresh push registry installed on the app for this test."""
    previous = app.state.push_registry
    app.state.push_registry = PushRegistry(queue_size=10)
    try:
        yield app.state.push_registry
    finally:
        app.state.push_registry.close_all()
        app.state.push_registry = previous


def _as_user(user_id: int, role: str = "member"):
    from smartflow.auth.dependencies import CurrentIdentity

    def override_get_current_user():
        return CurrentIdentity(user_id=user_id, role=role)

    return override_get_current_user


@pytest_asyncio.fixture()
async def client(db_session, registry):
    """HTTP client authenticated as user 7 (auth dependency overridden).

    Protected routes work without real JWT tokens. Use `login_as` to
    switch the caller mid-test.
    """
    from smartflow.auth.dependencies import get_current_user

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = _as_user(CALLER_ID)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def login_as():
    """Switch the identity the `client` fixture sends requests as."""
    from smartflow.auth.dependencies import get_current_user

    def _login(user_id: int, role: str = "member"):
        app.dependency_overrides[get_current_user] = _as_user(user_id, role)

    return _login


@pytest_asyncio.fixture()
async def unauthenticated_client(db_session, registry):
    """HTTP client WITHOUT auth override — for real JWT flows."""
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
