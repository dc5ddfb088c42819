"""Test fixtures — create/drop tables around every test."""

import os
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Force SQLite test database *before* any app import
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test_abengine.db"
os.environ["XAI_API_KEY"] = ""

from abengine.database import Base, async_session, engine  # noqa: E402
from abengine.main import app  # noqa: E402
from abengine.schemas import ABTestCreate, VariantCreate  # noqa: E402
from abengine.services.auth import create_access_token  # noqa: E402
from abengine.services.cache import TTLCache  # noqa: E402
from abengine.services.experiment_store import ExperimentStore  # noqa: E402


@pytest_asyncio.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db():
    async with async_session() as session:
        yield session


@pytest.fixture
def cache() -> TTLCache:
    return TTLCache(ttl_seconds=60)


@pytest_asyncio.fixture
async def store(db, cache) -> ExperimentStore:
    return ExperimentStore(db, cache=cache)


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    # Fresh cache per test; tables are dropped in between
    app.state.cache = TTLCache(ttl_seconds=60)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def admin_headers() -> dict:
    token = create_access_token("admin@example.com")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def definition():
    """Factory for a valid two-variant test definition."""

    def _make(**overrides) -> ABTestCreate:
        data = {
            "name": "Hero CTA",
            "element_selector": "#hero .cta",
            "goal_type": "click",
            "min_sample_size": 100,
            "confidence_level": 0.95,
            "variants": [
                VariantCreate(name="Control", is_control=True),
                VariantCreate(name="Orange", changes={"backgroundColor": "#FF7043", "text": "Start now"}),
            ],
        }
        data.update(overrides)
        return ABTestCreate(**data)

    return _make
