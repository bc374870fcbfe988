"""Pytest configuration and fixtures for FieldVisit tests.

Provides a throwaway SQLite database per test, a seeded ownership graph,
and an HTTP client bound to the app with the database dependency
overridden.

Seeded graph:

    admin            ADMIN
    s1               SUPERVISOR ── p1, p2
    s2               SUPERVISOR ── p3
    viewer           VIEWER     ── p4
    p_free           PROMOTER   (no supervisor)

    c1 → p1    c2 → unassigned    c3 → p3    c4 → p4
    v1 → p1/c1 v3 → p3/c3
"""

import os

# Must be set before the app (and its settings) are imported.
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

from dataclasses import dataclass
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.auth.jwt import create_access_token
from app.auth.principal import Principal
from app.database import Base, get_db
from app.main import app
from app.models.client import Client
from app.models.user import Role, User
from app.models.visit import Visit


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Create a file-backed SQLite engine with all tables."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'fieldvisit_test.db'}", echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory, graph) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with overridden database dependency.

    Each request gets its own session, committed on success and rolled back
    on error, like the real dependency.
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

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ── Test Data Fixtures ───────────────────────────────────────────

@dataclass
class Graph:
    admin: User
    s1: User
    s2: User
    viewer: User
    p1: User
    p2: User
    p3: User
    p4: User
    p_free: User
    c1: Client
    c2: Client
    c3: Client
    c4: Client
    v1: Visit
    v3: Visit


def make_user(user_id: str, role: Role, supervisor_id: str | None = None, **kwargs) -> User:
    return User(
        id=user_id,
        email=f"{user_id}@example.com",
        name=user_id.upper(),
        role=role,
        supervisor_id=supervisor_id,
        is_active=kwargs.pop("is_active", True),
        **kwargs,
    )


@pytest_asyncio.fixture
async def graph(db_session: AsyncSession) -> Graph:
    """Seed the ownership graph described in the module docstring."""
    admin = make_user("admin", Role.ADMIN)
    s1 = make_user("s1", Role.SUPERVISOR)
    s2 = make_user("s2", Role.SUPERVISOR)
    viewer = make_user("viewer", Role.VIEWER)
    db_session.add_all([admin, s1, s2, viewer])
    await db_session.flush()

    p1 = make_user("p1", Role.PROMOTER, supervisor_id=s1.id)
    p2 = make_user("p2", Role.PROMOTER, supervisor_id=s1.id)
    p3 = make_user("p3", Role.PROMOTER, supervisor_id=s2.id)
    p4 = make_user("p4", Role.PROMOTER, supervisor_id=viewer.id)
    p_free = make_user("p_free", Role.PROMOTER)
    db_session.add_all([p1, p2, p3, p4, p_free])
    await db_session.flush()

    c1 = Client(id="c1", name="Kiosk One", promoter_id=p1.id)
    c2 = Client(id="c2", name="Pool Store", promoter_id=None)
    c3 = Client(id="c3", name="Corner Shop", promoter_id=p3.id)
    c4 = Client(id="c4", name="Market Four", promoter_id=p4.id)
    db_session.add_all([c1, c2, c3, c4])
    await db_session.flush()

    v1 = Visit(id="v1", promoter_id=p1.id, client_id=c1.id, notes="Restocked")
    v3 = Visit(id="v3", promoter_id=p3.id, client_id=c3.id, notes="Price check")
    db_session.add_all([v1, v3])
    await db_session.commit()

    return Graph(
        admin=admin, s1=s1, s2=s2, viewer=viewer,
        p1=p1, p2=p2, p3=p3, p4=p4, p_free=p_free,
        c1=c1, c2=c2, c3=c3, c4=c4,
        v1=v1, v3=v3,
    )


def principal(user: User) -> Principal:
    return Principal.from_user(user)


def auth_headers(user: User) -> dict:
    """Authorization headers carrying a token for `user`."""
    token = create_access_token(user_id=user.id, role=Role(user.role).value)
    return {"Authorization": f"Bearer {token}"}


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "access: Authorization engine tests")
    config.addinivalue_line("markers", "ratelimit: Rate limiting tests")
