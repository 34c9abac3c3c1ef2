# tests/conftest.py — Shared test fixtures
import os
import uuid

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ["SOLIS_ORG_ID"] = "solis-test"
os.environ.setdefault("GEMINI_API_KEY", "")

from models import Base, MemberRole, utcnow
from auth import AuthService
from database import get_db_session
from document_store import DocumentStore
from members import MEMBERS
from realtime import SnapshotHub
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


@pytest.fixture
def hub():
    """A private snapshot hub so listeners never leak between tests"""
    return SnapshotHub()


@pytest.fixture
def store(db_session, hub):
    return DocumentStore(db_session, hub=hub)


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


async def make_member(store: DocumentStore, display_name: str, role: MemberRole, **extra) -> dict:
    """Write a member document directly, bypassing the first-member-is-owner rule"""
    user_id = str(uuid.uuid4())
    body = {
        "display_name": display_name,
        "email": f"{display_name.split()[0].lower()}@solis.test",
        "photo_url": None,
        "role": role.value,
        "title": "",
        "department": "",
        "manager_id": None,
        "team_ids": [],
        "active": True,
        "joined_at": utcnow(),
    }
    body.update(extra)
    await store.set(MEMBERS, user_id, body)
    return await store.get(MEMBERS, user_id)


@pytest_asyncio.fixture
async def owner(store):
    return await make_member(store, "Olivia Owner", MemberRole.OWNER)


@pytest_asyncio.fixture
async def admin_member(store, owner):
    return await make_member(store, "Adam Admin", MemberRole.ADMIN)


@pytest_asyncio.fixture
async def member_user(store, owner):
    return await make_member(store, "Maria Member", MemberRole.MEMBER)


@pytest_asyncio.fixture
async def other_member(store, owner):
    return await make_member(store, "Oscar Other", MemberRole.MEMBER)


@pytest_asyncio.fixture
async def readonly_member(store, owner):
    return await make_member(store, "Rita Readonly", MemberRole.READONLY)


def get_auth_headers(member: dict) -> dict:
    """Generate auth headers for a member (or any identity with an id)"""
    token_data = {
        "sub": member["id"],
        "email": member.get("email", ""),
        "name": member.get("display_name", ""),
    }
    token = AuthService.create_access_token(token_data)
    return {"Authorization": f"Bearer {token}"}
