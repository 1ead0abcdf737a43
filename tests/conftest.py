import os

# Settings and the module-level engine are built at import time.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENV", "test")
os.environ.setdefault("RESEND_API_KEY", "")

from collections.abc import AsyncGenerator  # noqa: E402
from datetime import datetime, timedelta, timezone  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.core.config import settings  # noqa: E402
from app.core.cookies import SESSION_COOKIE_NAME, make_session_value  # noqa: E402
from app.core.database import Base  # noqa: E402
from app.core.rate_limit import memory_attempt_store  # noqa: E402
from app.domain.auth_tokens import models as _auth_tokens  # noqa: E402,F401
from app.domain.linking import models as _linking  # noqa: E402,F401
from app.domain.magic_links import models as _magic_links  # noqa: E402,F401
from app.domain.users.models import User  # noqa: E402

TEST_BOT_HANDLE = "botlink_test_bot"
TEST_BOT_API_KEY = "test-bot-api-key-that-is-long-enough-000"
START = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock injected wherever services take ``clock=``."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingMailer:
    """Collects outgoing magic links instead of calling Resend."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def send_magic_link(self, to: str, magic_link: str) -> None:
        self.sent.append((to, magic_link))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def bot_settings(monkeypatch):
    """Deterministic bot configuration for every test."""
    monkeypatch.setattr(settings, "BOT_HANDLE", TEST_BOT_HANDLE)
    monkeypatch.setattr(settings, "BOT_API_KEY", TEST_BOT_API_KEY)
    monkeypatch.setattr(settings, "BOT_LINK_HOST", "t.me")
    monkeypatch.setattr(settings, "PUBLIC_BASE_URL", "")
    monkeypatch.setattr(settings, "RATE_LIMIT_BACKEND", "database")
    monkeypatch.setattr(settings, "TOKEN_RATE_LIMIT_ENABLED", True)
    memory_attempt_store.reset()
    yield
    memory_attempt_store.reset()


@pytest_asyncio.fixture
async def db_engine():
    """Fresh in-memory SQLite database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


async def create_user(session: AsyncSession, email: str) -> User:
    user = User(email=email)
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


@pytest_asyncio.fixture
async def owner(db_session: AsyncSession) -> User:
    return await create_user(db_session, "owner@example.com")


@pytest_asyncio.fixture
async def other_owner(db_session: AsyncSession) -> User:
    return await create_user(db_session, "other@example.com")


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest_asyncio.fixture
async def client(session_factory, mailer) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the test database and a recording mailer."""
    from app.core.database import get_db
    from app.web.dependencies import get_mailer
    from main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_mailer] = lambda: mailer

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://testserver",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


def login(client: AsyncClient, user: User) -> None:
    """Attach a valid session cookie for ``user`` to the client."""
    client.cookies.set(SESSION_COOKIE_NAME, make_session_value(user.id, user.email))


def bot_headers() -> dict[str, str]:
    return {"X-Bot-Api-Key": TEST_BOT_API_KEY}
