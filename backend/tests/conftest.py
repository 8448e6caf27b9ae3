"""
Shared test fixtures.

Uses an in-memory SQLite database for fast testing.
JSONB columns are compiled as JSON for SQLite compatibility.
Foreign keys are enforced and SAVEPOINTs work, as on PostgreSQL.
For integration tests against PostgreSQL, use docker compose.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.pool import StaticPool

from app.core.database import Base, get_db
from app.main import app
from app.models.core import FamilySettings, Person, Relationship, Suggestion  # noqa: F401
from app.models.infrastructure import AuditLog, User  # noqa: F401
from app.services.storage import LocalStorage, get_storage_adapter


# ─── SQLite compatibility: JSONB → JSON ───────────────────────

@compiles(JSONB, "sqlite")
def compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


# Use SQLite async for tests (aiosqlite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
test_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# pysqlite's own transaction handling breaks SAVEPOINT; take it over.
@event.listens_for(engine.sync_engine, "connect")
def _sqlite_on_connect(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@event.listens_for(engine.sync_engine, "begin")
def _sqlite_on_begin(conn):
    conn.exec_driver_sql("BEGIN")


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Provide a test database session."""
    async with test_session() as session:
        yield session


@pytest.fixture
def storage(tmp_path: Path) -> LocalStorage:
    """Local storage rooted in a per-test temporary directory."""
    return LocalStorage(root=tmp_path / "uploads", url_prefix="/api/uploads")


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, storage: LocalStorage) -> AsyncGenerator[AsyncClient, None]:
    """Provide a test HTTP client with database and storage overrides."""

    async def override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage_adapter] = lambda: storage

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# ─── Helper factories ─────────────────────────────────────────

@pytest_asyncio.fixture
async def make_user(db_session: AsyncSession):
    """Factory fixture for creating users."""
    counter = {"n": 0}

    async def _make(
        id: str | None = None,
        email: str | None = None,
        role: str = "MEMBER",
        name: str | None = None,
        is_active: bool = True,
    ) -> User:
        counter["n"] += 1
        user = User(
            id=id or f"user-{counter['n']}",
            email=email or f"user{counter['n']}@example.com",
            name=name,
            role=role,
            is_active=is_active,
        )
        db_session.add(user)
        await db_session.flush()
        return user
    return _make


@pytest_asyncio.fixture
async def admin(make_user, db_session: AsyncSession) -> User:
    """Committed, so it survives an import that rolls back."""
    user = await make_user(id="admin-1", email="admin@example.com", role="ADMIN", name="Ada Admin")
    await db_session.commit()
    return user


@pytest.fixture
def admin_headers(admin: User) -> dict[str, str]:
    return {"X-User-Id": admin.id}


@pytest_asyncio.fixture
async def make_person(db_session: AsyncSession):
    """Factory fixture for creating people."""
    async def _make(id: str, first_name: str = "Jane", last_name: str = "Doe", **fields) -> Person:
        person = Person(
            id=id,
            first_name=first_name,
            last_name=last_name,
            created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            updated_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            **fields,
        )
        db_session.add(person)
        await db_session.flush()
        return person
    return _make
