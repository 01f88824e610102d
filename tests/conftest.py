"""Shared fixtures: in-memory database, fast test settings, fixed clock."""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from backend.app.core.config import Settings
from backend.app.db.base import Base
from backend.app.models import backup_code, totp  # noqa: F401
from backend.app.services.totp_service import TotpService

# Fixed "now" for every service built by the fixtures
EPOCH = 319690800


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        CRYPT_ITERATIONS=1000,
        CRYPT_KEY="test-master-key",
    )


@pytest_asyncio.fixture
async def db_session():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def totp_service(db_session, test_settings):
    return TotpService(db_session, settings=test_settings, clock=lambda: EPOCH)
