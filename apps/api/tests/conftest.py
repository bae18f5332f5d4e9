import os
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("INTERNAL_API_KEY", "")

from rewards_api.app import create_app  # noqa: E402
from rewards_api.db.base import Base  # noqa: E402
from rewards_api.db.session import get_session  # noqa: E402
from rewards_api.models import User, UserRoleEnum  # noqa: E402
from rewards_api.observability.loyalty import get_loyalty_store  # noqa: E402


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_loyalty_store():
    store = get_loyalty_store()
    store.reset()
    yield store
    store.reset()


@pytest_asyncio.fixture
async def customer(session_factory) -> User:
    async with session_factory() as session:
        user = User(email="member@example.com", display_name="Member")
        session.add(user)
        await session.commit()
        return user


@pytest_asyncio.fixture
async def admin(session_factory) -> User:
    async with session_factory() as session:
        user = User(email="admin@example.com", display_name="Admin", role=UserRoleEnum.ADMIN.value)
        session.add(user)
        await session.commit()
        return user
