import os
from logging.config import fileConfig

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import engine_from_config, pool
from sqlalchemy.engine.url import make_url

# 1) Load .env before the application settings are read
load_dotenv()

# 2) Alembic config (reads alembic.ini)
config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# 3) Base and every mapped model
from app.core.config import settings  # noqa: E402
from app.core.database import Base  # noqa: E402
from app.domain.users.models import User  # noqa: E402,F401
from app.domain.linking.models import LinkedAccount  # noqa: E402,F401
from app.domain.auth_tokens.models import AuthToken  # noqa: E402,F401
from app.domain.magic_links.models import MagicLinkAttemptRecord  # noqa: E402,F401

target_metadata = Base.metadata

# Async drivers used by the app and their sync counterparts for migrations.
SYNC_DRIVERS = {
    "sqlite+aiosqlite": "sqlite+pysqlite",
    "postgresql+asyncpg": "postgresql+psycopg2",
}


def _sync_url_from_env() -> str:
    """Turn the async DATABASE_URL into a sync one for Alembic only."""
    url = make_url(os.getenv("DATABASE_URL") or settings.DATABASE_URL)
    driver = SYNC_DRIVERS.get(url.drivername)
    if driver:
        url = url.set(drivername=driver)
    return url.render_as_string(hide_password=False)


def _configure_sqlalchemy_url() -> None:
    config.set_main_option("sqlalchemy.url", _sync_url_from_env())


def run_migrations_offline() -> None:
    """Emit SQL without a live connection."""
    _configure_sqlalchemy_url()
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    _configure_sqlalchemy_url()
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
        future=True,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            compare_server_default=True,
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
