"""
Shared test fixtures for the pool challenge engine.

Provides a file-backed SQLite database (aiosqlite), the in-memory
profile and reward collaborators, mocked sweep locks and event
publisher, RSA keys for JWT testing, and an async test client.
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import app.models  # noqa: F401  (registers tables on Base.metadata)
from app.api.deps import get_challenge_judge, get_expiry_runner, get_matching_engine
from app.core import security
from app.database import Base, get_db
from app.models.pool_entry import (
    ChallengeCategory,
    ChallengeType,
    EntryStatus,
    PoolEntry,
    PreferredGender,
)
from app.pool_engine.engine import MatchingEngine
from app.pool_engine.expiry import run_expiry_sweep
from app.pool_engine.judge import ChallengeJudge
from app.redis_client import get_redis
from app.services.profile_service import MockProfileProvider, Profile
from app.services.reward_service import MockRewardSink

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


# --- RSA Key Fixtures ---


@pytest.fixture(scope="session")
def test_rsa_keys():
    """Generate a temporary RSA keypair for test JWT signing."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )

    return {"private_key": private_pem, "public_key": public_pem}


@pytest.fixture(autouse=True)
def security_with_keys(test_rsa_keys):
    """Configure token verification to use test RSA keys for every test."""
    security.configure_keys(
        private_key=test_rsa_keys["private_key"],
        public_key=test_rsa_keys["public_key"],
        algorithm="RS256",
    )


def auth_headers(user_id: uuid.UUID, role: str | None = None) -> dict:
    token = security.create_access_token(str(user_id), role=role)
    return {"Authorization": f"Bearer {token}"}


# --- Database ---


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Fresh SQLite database per test, schema created from the models."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'pool.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


# --- Collaborators ---


@pytest.fixture
def mock_locks():
    """Sweep lock manager whose locks are always free."""
    mgr = AsyncMock()
    mgr.acquire = AsyncMock(return_value=MagicMock())
    mgr.release = AsyncMock()
    return mgr


@pytest.fixture
def publisher():
    pub = AsyncMock()
    pub.publish = AsyncMock()
    return pub


@pytest.fixture
def profiles():
    return MockProfileProvider()


@pytest.fixture
def reward_sink():
    return MockRewardSink()


@pytest.fixture
def matching(session_factory, profiles, mock_locks, publisher):
    return MatchingEngine(
        session_factory=session_factory,
        profile_provider=profiles,
        lock_mgr=mock_locks,
        publisher=publisher,
    )


@pytest.fixture
def judge(session_factory, reward_sink, mock_locks, publisher):
    return ChallengeJudge(
        session_factory=session_factory,
        reward_sink=reward_sink,
        lock_mgr=mock_locks,
        publisher=publisher,
    )


# --- Entities ---


def _make_entry(**overrides) -> PoolEntry:
    """Create an in-memory PoolEntry with test defaults via the normal constructor."""
    defaults = {
        "user_id": uuid.uuid4(),
        "challenge_category": ChallengeCategory.CARDIO,
        "challenge_type": ChallengeType.DISTANCE_KM,
        "target_value": Decimal("25"),
        "duration_days": 7,
        "preferred_gender": PreferredGender.ANY,
        "latest_start_date": NOW + timedelta(days=3),
        "status": EntryStatus.WAITING,
        "created_at": NOW - timedelta(hours=1),
    }
    defaults.update(overrides)
    return PoolEntry(**defaults)


@pytest.fixture
def make_entry():
    """Factory fixture for creating PoolEntry instances."""
    return _make_entry


@pytest.fixture
def make_profile():
    def _make(user_id, gender="female", birth_year=1995):
        return Profile(user_id=user_id, gender=gender, birth_year=birth_year)
    return _make


@pytest.fixture
def submit(matching, profiles):
    """
    Submit an entry through the engine for a new (or given) user.

    The user gets a profile unless ``profile=False``.
    """
    async def _submit(
        user_id=None,
        gender="female",
        birth_year=1995,
        profile=True,
        now=NOW,
        **terms,
    ):
        user_id = user_id or uuid.uuid4()
        if profile:
            profiles.set_profile(user_id, gender=gender, birth_year=birth_year)
        fields = {
            "challenge_category": ChallengeCategory.CARDIO,
            "challenge_type": ChallengeType.DISTANCE_KM,
            "target_value": Decimal("25"),
            "duration_days": 7,
        }
        fields.update(terms)
        return await matching.submit_entry(user_id=user_id, now=now, **fields)

    return _submit


# --- HTTP client ---


@pytest.fixture
def fake_redis():
    """Redis stand-in for the health probe; PING succeeds unless told otherwise."""
    client = MagicMock()
    client.ping = AsyncMock(return_value=True)
    return client


@pytest_asyncio.fixture
async def client(session_factory, matching, judge, mock_locks, publisher, fake_redis):
    """
    Async HTTP test client with the database and pool engine overridden
    to use the test database and collaborators.
    """
    from app.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session
            await session.commit()

    def override_expiry_runner():
        async def _run():
            return await run_expiry_sweep(
                session_factory=session_factory, lock_mgr=mock_locks, publisher=publisher,
            )
        return _run

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_matching_engine] = lambda: matching
    app.dependency_overrides[get_challenge_judge] = lambda: judge
    app.dependency_overrides[get_expiry_runner] = override_expiry_runner
    app.dependency_overrides[get_redis] = lambda: fake_redis

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def auth():
    """``auth(user_id, role=None)`` → Authorization header dict."""
    return auth_headers
