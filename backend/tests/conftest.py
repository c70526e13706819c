"""
PawMatch Backend — Test Configuration (conftest.py)
=====================================================

What:  Shared pytest fixtures for the whole test suite.
How:   Every test gets its own SQLite file database (aiosqlite) created
       from Base.metadata, seeded with two shelters, three animals and two
       users. HTTP tests run the real app through httpx's ASGITransport
       with get_db_session pointed at that database.

Fixture Hierarchy (all function-scoped):
    db_engine ──▶ session_factory ──▶ seed ──┬──▶ db       (one session)
                                             └──▶ client   (AsyncClient)

SQLite allows one writer at a time. HTTP tests therefore check results
over HTTP or through short-lived sessions, never through a session that
stays open across requests.
"""

import os

# Override settings for testing BEFORE any pawmatch imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./pawmatch_test.db"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["JWT_SECRET"] = "test-user-secret-0123456789abcdef0123"
os.environ["SHELTER_JWT_SECRET"] = "test-shelter-secret-0123456789abcdef"
os.environ["TRUST_SHELTER_ID_HEADER"] = "false"
os.environ["TRUST_USER_ID_HEADER"] = "false"
os.environ["AUTO_MESSAGE_ON_START"] = "true"
os.environ["RATE_LIMIT_REQUESTS"] = "100000"

import uuid
from types import SimpleNamespace
from typing import Optional

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from pawmatch.config import settings
from pawmatch.database import Base, build_engine, build_session_factory, get_db_session
from pawmatch.models import Animal, Shelter, User

TEST_JWT_SECRET = os.environ["JWT_SECRET"]
TEST_SHELTER_SECRET = os.environ["SHELTER_JWT_SECRET"]


# ══════════════════════════════════════════════════════════════════════════
# Token Helpers
# ══════════════════════════════════════════════════════════════════════════

def make_user_token(user_id, name: Optional[str] = "Sanne", secret: str = TEST_JWT_SECRET, **claims) -> str:
    payload = {"id": str(user_id), **claims}
    if name is not None:
        payload["name"] = name
    return jwt.encode(payload, secret, algorithm="HS256")


def make_shelter_token(shelter_id, token_type: str = "shelter", secret: str = TEST_SHELTER_SECRET) -> str:
    return jwt.encode(
        {"id": str(shelter_id), "type": token_type, "role": token_type},
        secret,
        algorithm="HS256",
    )


def user_headers(user_id, device_key: Optional[str] = None, name: str = "Sanne") -> dict:
    headers = {"Authorization": f"Bearer {make_user_token(user_id, name=name)}"}
    if device_key:
        headers["X-Device-Key"] = device_key
    return headers


def shelter_headers(shelter_id) -> dict:
    return {"X-Shelter-Token": make_shelter_token(shelter_id)}


# ══════════════════════════════════════════════════════════════════════════
# Database Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'pawmatch.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest_asyncio.fixture
async def seed(session_factory):
    """
    Seeded collaborator records.

        s1 "Dierenasiel Utrecht"   owns a1 "Bello"
        s2 "Asiel Noord"           owns a3 "Minoes"
        a2 "Zwerver"               has no shelter
        u1 "Sanne", u2 "Daan"
    """
    ids = SimpleNamespace(
        s1=uuid.uuid4(),
        s2=uuid.uuid4(),
        a1=uuid.uuid4(),
        a2=uuid.uuid4(),
        a3=uuid.uuid4(),
        u1=uuid.uuid4(),
        u2=uuid.uuid4(),
    )
    async with session_factory() as session:
        session.add_all([
            Shelter(id=ids.s1, name="Dierenasiel Utrecht"),
            Shelter(id=ids.s2, name="Asiel Noord"),
        ])
        await session.flush()
        session.add_all([
            Animal(id=ids.a1, name="Bello", photo="/img/bello.jpg", shelter_id=ids.s1),
            Animal(id=ids.a2, name="Zwerver", photo=None, shelter_id=None),
            Animal(id=ids.a3, name="Minoes", photo="/img/minoes.jpg", shelter_id=ids.s2),
            User(id=ids.u1, name="Sanne"),
            User(id=ids.u2, name="Daan"),
        ])
        await session.commit()
    return ids


@pytest_asyncio.fixture
async def db(session_factory, seed):
    """A single session for service-level tests; rolled back on teardown."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ══════════════════════════════════════════════════════════════════════════
# HTTP Client
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def client(session_factory, seed):
    """
    HTTPX AsyncClient talking to a fresh app instance.

    A fresh app per test also means fresh rate limit counters.
    """
    from pawmatch.main import create_app

    app = create_app()

    async def override_db_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = override_db_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client


@pytest.fixture
def legacy_headers(monkeypatch):
    """Turns on the unsigned X-Shelter-Id / X-User-Id headers for one test."""
    monkeypatch.setattr(settings, "trust_shelter_id_header", True)
    monkeypatch.setattr(settings, "trust_user_id_header", True)


@pytest.fixture
def auth():
    """Token and header builders for the seeded users and shelters."""
    return SimpleNamespace(
        user_token=make_user_token,
        shelter_token=make_shelter_token,
        user_headers=user_headers,
        shelter_headers=shelter_headers,
    )
