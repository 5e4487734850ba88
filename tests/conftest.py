"""Global pytest fixtures for the ExpertDesk test suite.

Service and API tests run against a real SQLite database (one file per
test, via aiosqlite) so conditional updates, unique constraints and
concurrent claims behave as they do in production. External services
are replaced by the in-memory fakes in ``tests.factories``.
"""

from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from expertdesk.collaborators import Collaborators
from expertdesk.database import build_engine, build_session_factory
from expertdesk.models import Base
from expertdesk.seed import seed_taxonomy
from tests.factories import (
    FakeContentStore,
    FakeUserDirectory,
    RecordingNotifier,
    taxonomy_target,
)
from tests.factories.users import (
    ASKER,
    EXPERT_1,
    EXPERT_2,
    EXPERT_3,
    MODERATOR_A,
    MODERATOR_B,
    OTHER_USER,
    OWNER,
    REPORTER_1,
    REPORTER_2,
)


# ===========================================
# DATABASE FIXTURES
# ===========================================


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh SQLite database with the full schema."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'expertdesk.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session used by the test body. Commit before running scheduled jobs."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def target(db: AsyncSession):
    """Seeded taxonomy plus the ids tests route against."""
    await seed_taxonomy(db)
    await db.commit()
    return await taxonomy_target(db)


# ===========================================
# COLLABORATOR FIXTURES
# ===========================================


@pytest.fixture
def directory() -> FakeUserDirectory:
    directory = FakeUserDirectory()
    directory.add(ASKER)
    directory.add(OTHER_USER)
    directory.add(EXPERT_1, verified=True)
    directory.add(EXPERT_2, verified=True)
    directory.add(EXPERT_3, verified=True)
    directory.add(REPORTER_1)
    directory.add(REPORTER_2)
    directory.add(OWNER)
    directory.add(MODERATOR_A, is_admin=True)
    directory.add(MODERATOR_B, is_admin=True)
    return directory


@pytest.fixture
def content_store() -> FakeContentStore:
    store = FakeContentStore()
    store.add("post", 500, OWNER)
    store.add("post", 501, OWNER)
    store.add("comment", 700, OWNER)
    return store


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def collab(directory, content_store, notifier) -> Collaborators:
    return Collaborators(directory=directory, content_store=content_store, notifier=notifier)


# ===========================================
# REDIS MOCK FIXTURES
# ===========================================


@pytest.fixture
def mock_redis_client() -> MagicMock:
    """Create a mock Redis client for unit tests."""
    redis = MagicMock()
    redis.get = AsyncMock(return_value=None)
    redis.setex = AsyncMock(return_value=True)
    redis.publish = AsyncMock(return_value=1)
    redis.pipeline = MagicMock(return_value=redis)
    redis.execute = AsyncMock(return_value=[])
    return redis
