"""
Test configuration and fixtures.

Provides:
- SQLite session factory on a per-test database file
- HTTPX AsyncClient bound to the app, with services wired to the test database
"""
import os

# Must be set before casemail.config is imported
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import casemail.models  # noqa: F401
from casemail.database import Base, serialize_sqlite_transactions
from casemail.services.batch import ClassificationBatchRunner
from casemail.services.classifier import EmailClassifier
from casemail.services.processor import ClassificationProcessor
from casemail.services.review_queue import ReviewQueueManager
from casemail.services.types import CallerIdentity


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = serialize_sqlite_transactions(
        create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'casemail.db'}")
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def caller() -> CallerIdentity:
    return CallerIdentity(user_id="user-1", firm_id="firm-1")


@pytest.fixture
def other_firm_caller() -> CallerIdentity:
    return CallerIdentity(user_id="user-9", firm_id="firm-9")


@pytest.fixture
def review_queue(session_factory) -> ReviewQueueManager:
    return ReviewQueueManager(session_factory)


@pytest.fixture
def processor(session_factory, review_queue) -> ClassificationProcessor:
    runner = ClassificationBatchRunner(EmailClassifier(), concurrency=2)
    return ClassificationProcessor(session_factory, runner=runner, review=review_queue)


@pytest_asyncio.fixture
async def client(processor, review_queue):
    from casemail.api.deps import get_processor, get_review_queue
    from casemail.main import app

    app.dependency_overrides[get_processor] = lambda: processor
    app.dependency_overrides[get_review_queue] = lambda: review_queue
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
