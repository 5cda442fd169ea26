"""Shared fixtures: throwaway sqlite database, controllable clock, fast bcrypt."""

from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from identity_service.config import Settings
from identity_service.infrastructure.database import (
    create_engine,
    create_session_factory,
    init_db,
)
from identity_service.main import create_app
from identity_service.UAA.schemas import UserCreate
from identity_service.UAA.services import IdentityService
from identity_service.UAA.utils import build_password_context

SECRET = "test-secret"


class FakeClock:
    """Naive-UTC clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def pwd_context():
    # minimum bcrypt cost keeps the suite fast
    return build_password_context(rounds=4)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'identity.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def sessions(engine):
    return create_session_factory(engine)


@pytest.fixture
def service(sessions, clock, pwd_context) -> IdentityService:
    return IdentityService(
        sessions,
        SECRET,
        timedelta(hours=24),
        pwd_context=pwd_context,
        clock=clock,
    )


@pytest.fixture
def alice() -> UserCreate:
    return UserCreate(
        username="alice",
        email="a@x",
        password="hunter2",
        first_name="A",
        last_name="L",
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(secret_key=SECRET, bcrypt_rounds=4, environment="development")


@pytest.fixture
def app(settings, engine):
    return create_app(settings=settings, engine=engine)


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
