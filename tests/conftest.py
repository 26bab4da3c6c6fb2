"""Shared test fixtures: file-backed SQLite database, fake Redis, token helpers."""

import os
import time
from decimal import Decimal

# Settings are cached on first use; configure them before any app import.
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-with-enough-entropy-0123456789")
os.environ.setdefault("MAINTENANCE_INTERVAL_SECONDS", "0")
os.environ.setdefault("DEBUG", "true")

import fakeredis.aioredis
import jwt as pyjwt
import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from pilgrim_payments.core.auth import AuthUser
from pilgrim_payments.db.base import Base
from pilgrim_payments.db.models.booking import Booking

TRAVELER_ID = "u1"
OTHER_USER_ID = "u2"
VALID_KEY = "abcd1234abcd1234"


def make_token(user_id: str, role: str = "authenticated", expires_in: int = 3600, **claims) -> str:
    """Sign a session token the way the auth provider would."""
    now = int(time.time())
    payload = {
        "sub": user_id,
        "role": role,
        "aud": "authenticated",
        "iat": now,
        "exp": now + expires_in,
        **claims,
    }
    return pyjwt.encode(payload, os.environ["JWT_SECRET"], algorithm="HS256")


def auth_headers(user_id: str = TRAVELER_ID, role: str = "authenticated") -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, role)}"}


@pytest.fixture
def traveler() -> AuthUser:
    return AuthUser(user_id=TRAVELER_ID, role="authenticated", claims={"sub": TRAVELER_ID})


@pytest.fixture
def other_user() -> AuthUser:
    return AuthUser(user_id=OTHER_USER_ID, role="authenticated", claims={"sub": OTHER_USER_ID})


@pytest.fixture
async def engine(tmp_path) -> AsyncEngine:
    """Create a SQLite test engine and point the global session factory at it.

    A file database with NullPool gives every session its own connection, so
    concurrent requests contend on real transactions and unique constraints.
    """
    import pilgrim_payments.db.base as db_mod
    import pilgrim_payments.db.models  # noqa: F401

    engine = db_mod.build_engine(f"sqlite+aiosqlite:///{tmp_path / 'payments.db'}", poolclass=NullPool, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    db_mod._engine = engine
    db_mod._session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    yield engine

    db_mod._engine = None
    db_mod._session_factory = None
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def fake_redis():
    """Fake Redis installed as the shared client."""
    import pilgrim_payments.db.redis as redis_mod

    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    redis_mod._redis = client
    yield client
    redis_mod._redis = None
    await client.aclose()


@pytest.fixture
def seed_booking(session_factory):
    """Factory fixture inserting a booking row."""

    async def _seed(
        booking_id: str = "b1",
        traveler_id: str = TRAVELER_ID,
        status: str = "pending",
        total_amount: Decimal | None = Decimal("500"),
    ) -> Booking:
        async with session_factory() as session:
            booking = Booking(
                id=booking_id,
                traveler_id=traveler_id,
                status=status,
                total_amount=total_amount,
                currency="SAR",
            )
            session.add(booking)
            await session.commit()
            return booking

    return _seed
