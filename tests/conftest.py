import os
import uuid
from decimal import Decimal

# Settings are read on import, give them something before the app loads
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from bookmind.ai_feature.llm import get_language_model
from bookmind.core import background, models
from bookmind.core.cache import BoundedCache, MemoryCacheStore, get_cache
from bookmind.core.database import Base, get_db
from bookmind.core.security import create_access_token, hash_password
from bookmind.main import app

# In-memory SQLite shared through one connection, a fresh schema per test
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")


class FakeLanguageModel:
    """Scripted stand-in for the hosted model. Records every call."""

    def __init__(self):
        self.intent_reply = '{"queryType": "MY_BOOK_COUNT", "parameters": {}}'
        self.answer = "Here is what I found in your library."
        self.recommend_reply = '{"recommendations": []}'
        self.error = None
        self.explain_error = None
        self.interpret_calls = []
        self.explain_calls = []
        self.recommend_calls = []

    async def interpret(self, question: str, context: str) -> str:
        self.interpret_calls.append((question, context))
        if self.error is not None:
            raise self.error
        return self.intent_reply

    async def explain(self, question: str, rows_json: str) -> str:
        self.explain_calls.append((question, rows_json))
        if self.explain_error is not None:
            raise self.explain_error
        return self.answer

    async def recommend(self, prompt: str) -> str:
        self.recommend_calls.append(prompt)
        if self.error is not None:
            raise self.error
        return self.recommend_reply


# Create the schema for every test and drop it once the test is done
@pytest_asyncio.fixture(scope="function")
async def test_engine():
    if TEST_DATABASE_URL.startswith("sqlite"):
        engine = create_async_engine(
            TEST_DATABASE_URL,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(test_engine):
    TestingSessionLocal = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with TestingSessionLocal() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def cache():
    bounded = BoundedCache(MemoryCacheStore(), timeout_seconds=0.5)
    yield bounded
    await background.drain()


@pytest_asyncio.fixture(scope="function")
async def fake_model():
    return FakeLanguageModel()


# Client with the database, the cache and the model swapped for test doubles
@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession, cache: BoundedCache, fake_model):
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[get_language_model] = lambda: fake_model

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    await background.drain()
    app.dependency_overrides.clear()


async def _make_user(db_session: AsyncSession, prefix: str, role: str) -> models.User:
    user = models.User(
        email=f"{prefix}_{uuid.uuid4().hex[:8]}@gmail.com",
        username=f"{prefix}_{uuid.uuid4().hex[:4]}",
        password=hash_password("password123"),
        role=role,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture(scope="function")
async def test_user(db_session: AsyncSession):
    return await _make_user(db_session, "test", "user")


@pytest_asyncio.fixture(scope="function")
async def other_user(db_session: AsyncSession):
    return await _make_user(db_session, "other", "user")


@pytest_asyncio.fixture(scope="function")
async def test_admin(db_session: AsyncSession):
    return await _make_user(db_session, "admin", "admin")


@pytest_asyncio.fixture(scope="function")
async def auth_headers_user(test_user):
    token = create_access_token({"user_id": test_user.id})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture(scope="function")
async def auth_headers_other(other_user):
    token = create_access_token({"user_id": other_user.id})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture(scope="function")
async def auth_headers_admin(test_admin):
    token = create_access_token({"user_id": test_admin.id})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture(scope="function")
async def test_book(db_session: AsyncSession, test_user):
    book = models.Book(
        title=f"Test Book {uuid.uuid4().hex[:8]}",
        author="Ursula K. Le Guin",
        genre="Fantasy",
        price=Decimal("12.50"),
        reading_status="Reading",
        publication_year=1968,
        owner_id=test_user.id,
    )
    db_session.add(book)
    await db_session.commit()
    await db_session.refresh(book)
    return book
