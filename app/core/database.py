from datetime import datetime, timezone

from sqlalchemy import DateTime, event, text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator

from app.core.config import settings

# Create async engine
database_url = make_url(settings.DATABASE_URL)

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG and settings.LOG_LEVEL.upper() == "DEBUG",
    future=True,
)

if database_url.get_backend_name() == "sqlite":

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):  # type: ignore[arg-type]
        cursor = dbapi_connection.cursor()
        pragmas = (
            text("PRAGMA journal_mode=WAL"),
            text("PRAGMA synchronous=NORMAL"),
            text("PRAGMA foreign_keys=ON"),
            text("PRAGMA busy_timeout=5000"),
        )

        for pragma in pragmas:
            cursor.execute(pragma.text)
            if pragma.text.startswith("PRAGMA journal_mode"):
                cursor.fetchone()
        cursor.close()

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# Base class for models
Base = declarative_base()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend.

    SQLite hands back naive values; they are stored and read as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


async def get_db():
    """Dependency for getting database sessions."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db():
    """Initialize database - create all tables."""
    # Register every model on Base.metadata before create_all.
    from app.domain.users import models as _users  # noqa: F401
    from app.domain.linking import models as _linking  # noqa: F401
    from app.domain.auth_tokens import models as _auth_tokens  # noqa: F401
    from app.domain.magic_links import models as _magic_links  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_db():
    await engine.dispose()
