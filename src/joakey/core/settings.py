"""Application settings and configuration.

This module defines all configuration options for the Joakey chat service.
Settings are loaded from environment variables with sensible defaults.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Joakey Chat", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")

    # Security and authentication
    secret_key: str = Field(default="change-me", alias="SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(
        default=60 * 24 * 7,
        alias="ACCESS_TOKEN_EXPIRE_MINUTES",
    )
    debug: bool = Field(default=False, alias="DEBUG")

    # Database configuration
    database_url: str = Field(default="sqlite:///./joakey.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Message encryption. The master secret is expanded into one key per chat.
    message_master_secret: str = Field(
        default="joakey-development-master-secret",
        alias="MESSAGE_MASTER_SECRET",
    )
    # Passphrase of the browser clients' shared-secret format; read-only support.
    legacy_message_passphrase: str | None = Field(
        default=None,
        alias="LEGACY_MESSAGE_PASSPHRASE",
    )
    max_message_length: int = Field(default=4000, alias="MAX_MESSAGE_LENGTH")

    # Realtime change feed
    change_feed_backend: Literal["memory", "redis"] = Field(
        default="memory",
        alias="CHANGE_FEED_BACKEND",
    )
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")
    chat_sync_strategy: Literal["reload", "incremental"] = Field(
        default="reload",
        alias="CHAT_SYNC_STRATEGY",
    )

    # Order summary / payment instructions
    payment_va_number: str = Field(default="3901085797009915", alias="PAYMENT_VA_NUMBER")
    payment_va_holder: str = Field(default="Admin Joakey", alias="PAYMENT_VA_HOLDER")
    payment_window_minutes: int = Field(default=30, alias="PAYMENT_WINDOW_MINUTES")

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(
        default=["*"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["*"],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url


settings = Settings()
