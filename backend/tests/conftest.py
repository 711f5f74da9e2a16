# tests/conftest.py — Shared test fixtures
import os
import uuid

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ["OVERDUE_CHECK_INTERVAL_MINUTES"] = "0"

from models import Base, User, UserRole
from auth import AuthService, _login_attempts
from database import get_db_session
from main import app


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(db_engine):
    """HTTP test client with overridden DB dependency"""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
    _login_attempts.clear()


async def _make_user(db_session, username: str, display_name: str, password: str, role: UserRole) -> User:
    user = User(
        id=str(uuid.uuid4()),
        username=username,
        email=f"{username}@kanban.dev",
        display_name=display_name,
        password_hash=AuthService.hash_password(password),
        role=role,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def test_user(db_session):
    """Create a regular user"""
    return await _make_user(db_session, "testuser", "Test User", "TestPassword123!", UserRole.USER)


@pytest_asyncio.fixture
async def other_user(db_session):
    """Create a second regular user with no access to anything yet"""
    return await _make_user(db_session, "otheruser", "Other User", "OtherPassword123!", UserRole.USER)


@pytest_asyncio.fixture
async def admin_user(db_session):
    """Create an admin user"""
    return await _make_user(db_session, "adminuser", "Admin User", "AdminPassword123!", UserRole.ADMIN)


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token, _, _ = AuthService.create_session_token(user)
    return {"Authorization": f"Bearer {token}"}


async def create_board(client: AsyncClient, headers: dict, title: str = "Test Board") -> dict:
    resp = await client.post("/api/v1/boards", json={"title": title}, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


async def create_list(client: AsyncClient, headers: dict, board_id: str, title: str = "To Do") -> dict:
    resp = await client.post(f"/api/v1/boards/{board_id}/lists", json={"title": title}, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


async def create_card(client: AsyncClient, headers: dict, list_id: str, title: str = "Task", **extra) -> dict:
    resp = await client.post(f"/api/v1/lists/{list_id}/cards", json={"title": title, **extra}, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


async def add_member(client: AsyncClient, headers: dict, board_id: str, user_id: str, role: str) -> dict:
    resp = await client.post(
        f"/api/v1/boards/{board_id}/members",
        json={"user_id": user_id, "role": role},
        headers=headers,
    )
    assert resp.status_code == 201, resp.text
    return resp.json()
