import logging
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ALLOWED_HOSTS = ["localhost", "127.0.0.1", "testserver"]
DEFAULT_SECRET_KEY = "change-this-secret-key-in-production"

logger = logging.getLogger(__name__)


def _normalize_allowed_hosts(value: Any) -> list[str]:
    """Accept comma-separated string or list-like and normalize hosts."""
    if value is None or value == "":
        return []

    if isinstance(value, str):
        parts = [part.strip() for part in value.split(",")]
    elif isinstance(value, (list, tuple, set)):
        parts = [str(part).strip() for part in value]
    else:
        return []

    return [part for part in parts if part]


class Settings(BaseSettings):
    """Application settings."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./botlink.db"
    ALLOWED_HOSTS: list[str] = Field(default_factory=lambda: DEFAULT_ALLOWED_HOSTS.copy())

    # Application
    ENV: str = "development"
    SECRET_KEY: str = DEFAULT_SECRET_KEY
    APP_NAME: str = "Botlink"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    LOG_TO_FILE: bool = True
    # Origin used in emailed links when the app sits behind a proxy; empty uses the request URL.
    PUBLIC_BASE_URL: str = ""

    # Resend API
    RESEND_API_KEY: str = ""
    RESEND_FROM_EMAIL: str = "noreply@example.com"
    EMAIL_SEND_TIMEOUT_SECONDS: float = 10.0

    # Magic Link
    MAGIC_LINK_EXPIRY_MINUTES: int = 15
    MAGIC_LINK_COOLDOWN_SECONDS: int = 60
    MAGIC_LINK_HOURLY_LIMIT: int = 10
    MAGIC_LINK_WINDOW_SECONDS: int = 60 * 60
    RATE_LIMIT_BACKEND: Literal["database", "memory"] = "database"

    # Bot linking
    AUTH_TOKEN_TTL_MINUTES: int = 15
    BOT_LINK_HOST: str = "t.me"
    BOT_HANDLE: str = ""
    BOT_API_KEY: str = ""
    TOKEN_RATE_LIMIT_ENABLED: bool = True
    TOKEN_RATE_LIMIT_MAX: int = 5
    TOKEN_RATE_LIMIT_WINDOW_SECONDS: int = 60

    # Pydantic v2 compatible settings: read .env and ignore extra env vars
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("ALLOWED_HOSTS", mode="before")
    @classmethod
    def parse_allowed_hosts(cls, value: Any) -> list[str] | Any:
        """Support comma-separated ALLOWED_HOSTS from environment."""
        return _normalize_allowed_hosts(value)

    @field_validator("RATE_LIMIT_BACKEND", mode="before")
    @classmethod
    def parse_rate_limit_backend(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @property
    def is_production(self) -> bool:
        return self.ENV.lower() == "production"


def _validate_security() -> None:
    """Fail fast when running production with insecure defaults."""
    if not settings.is_production:
        return

    secret = settings.SECRET_KEY
    if not secret or secret == DEFAULT_SECRET_KEY or len(secret) < 32:
        raise ValueError("SECRET_KEY must be set to a strong value in production.")

    if not settings.ALLOWED_HOSTS or settings.ALLOWED_HOSTS == DEFAULT_ALLOWED_HOSTS:
        raise ValueError("ALLOWED_HOSTS must be configured explicitly in production.")

    if settings.DATABASE_URL.startswith("sqlite"):
        raise ValueError("Use PostgreSQL in production; sqlite is only for local/dev.")

    if not settings.BOT_API_KEY or len(settings.BOT_API_KEY) < 32:
        raise ValueError("BOT_API_KEY must be set to a strong value in production.")

    if not settings.BOT_HANDLE:
        raise ValueError("BOT_HANDLE must be configured in production.")

    if settings.RATE_LIMIT_BACKEND == "memory":
        # Counts are process-local; every replica enforces its own limits.
        logger.warning(
            "RATE_LIMIT_BACKEND=memory is only correct for single-instance deployments"
        )


settings = Settings()


_validate_security()
