from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load variables from .env if present
load_dotenv()

class Settings(BaseSettings):
    """Project configuration loaded from environment variables or .env file."""
    # Model config for Pydantic v2
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,  # Make env var names case-insensitive
        env_prefix="",  # No prefix for env vars
        extra="ignore",  # Ignore unknown env keys
        populate_by_name=True,
    )

    # Database settings with aliases for UPPERCASE env vars
    postgres_dsn: str | None = Field(None, alias="POSTGRES_DSN")
    postgres_host: str = Field("localhost", alias="POSTGRES_HOST")
    postgres_port: int = Field(5432, alias="POSTGRES_PORT")
    postgres_db: str = Field("freightbid", alias="POSTGRES_DB")
    postgres_user: str = Field("freightbid", alias="POSTGRES_USER")
    postgres_password: str = Field("freightbid", alias="POSTGRES_PASSWORD")
    db_pool_size: int = Field(10, alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(20, alias="DB_MAX_OVERFLOW")
    db_echo: bool = Field(False, alias="DB_ECHO")

    # Admin API: without a signing key the admin endpoints refuse to work
    secret_key: str | None = Field(None, alias="SECRET_KEY")
    access_token_expire_minutes: int = Field(60, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # House consigner that owns auctions created from the dashboard
    admin_consigner_phone: str = Field("7099220645", alias="ADMIN_CONSIGNER_PHONE")

    # Redis / Celery
    redis_host: str = Field("localhost", alias="REDIS_HOST")
    redis_port: int = Field(6379, alias="REDIS_PORT")
    celery_broker_url: str | None = Field(None, alias="CELERY_BROKER_URL")
    celery_result_backend: str | None = Field(None, alias="CELERY_RESULT_BACKEND")

    # Change feed: "memory" (single process) or "redis" (pub/sub)
    change_feed_backend: str = Field("memory", alias="CHANGE_FEED_BACKEND")

    # Bid aggregate recomputation
    aggregate_max_attempts: int = Field(3, alias="AGGREGATE_MAX_ATTEMPTS")

    # Viewer polling policy (seconds)
    poll_active_seconds: float = Field(15, alias="POLL_ACTIVE_SECONDS")
    poll_idle_seconds: float = Field(60, alias="POLL_IDLE_SECONDS")
    poll_hidden_seconds: float = Field(300, alias="POLL_HIDDEN_SECONDS")
    poll_terminal_seconds: float = Field(60, alias="POLL_TERMINAL_SECONDS")
    poll_terminal_idle_seconds: float = Field(300, alias="POLL_TERMINAL_IDLE_SECONDS")
    poll_connected_factor: float = Field(2, alias="POLL_CONNECTED_FACTOR")
    idle_after_seconds: float = Field(300, alias="IDLE_AFTER_SECONDS")

    admin_port: int = Field(8000, alias="ADMIN_PORT")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    @property
    def database_url(self) -> str:
        """Construct database URL from components or use DSN if provided."""
        if self.postgres_dsn:
            return self.postgres_dsn
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def redis_url(self) -> str:
        return f"redis://{self.redis_host}:{self.redis_port}/0"

    @model_validator(mode='after')
    def validate_database_config(self) -> 'Settings':
        """Validate database configuration."""
        if not self.postgres_dsn and not all([
            self.postgres_host,
            self.postgres_port,
            self.postgres_db,
            self.postgres_user,
            self.postgres_password
        ]):
            raise ValueError(
                "Either POSTGRES_DSN or all database connection parameters must be provided"
            )
        if self.change_feed_backend not in ("memory", "redis"):
            raise ValueError("CHANGE_FEED_BACKEND must be 'memory' or 'redis'")
        return self

@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
