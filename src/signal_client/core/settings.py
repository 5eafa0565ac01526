"""Client settings and configuration.

This module defines all configuration options for the Signal client core.
Settings are loaded from environment variables with sensible defaults.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files, or by
    constructing an instance explicitly and handing it to the client context.
    """

    # Document store backend
    store_backend: Literal["memory", "sql"] = Field(default="memory", alias="SIGNAL_STORE_BACKEND")
    database_url: str = Field(default="sqlite:///./signal.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Blob storage
    blob_base_url: str | None = Field(default=None, alias="SIGNAL_BLOB_BASE_URL")
    blob_public_url: str | None = Field(default=None, alias="SIGNAL_BLOB_PUBLIC_URL")
    blob_http_timeout_seconds: float = Field(default=10.0, alias="SIGNAL_BLOB_HTTP_TIMEOUT_SECONDS")
    blob_auth_token: str | None = Field(default=None, alias="SIGNAL_BLOB_AUTH_TOKEN")

    # ID token verification
    auth_token_secret: str | None = Field(default=None, alias="SIGNAL_AUTH_TOKEN_SECRET")
    auth_token_audience: str | None = Field(default=None, alias="SIGNAL_AUTH_TOKEN_AUDIENCE")
    auth_token_algorithm: str = Field(default="HS256", alias="SIGNAL_AUTH_TOKEN_ALGORITHM")

    # Feed windows
    feed_page_size: int = Field(default=40, ge=1, alias="FEED_PAGE_SIZE")
    feed_live_window: int = Field(default=50, ge=1, alias="FEED_LIVE_WINDOW")
    profile_page_size: int = Field(default=20, ge=1, alias="PROFILE_PAGE_SIZE")
    explore_window: int = Field(default=100, ge=1, alias="EXPLORE_WINDOW")
    reels_window: int = Field(default=20, ge=1, alias="REELS_WINDOW")
    trending_tags_limit: int = Field(default=8, ge=1, alias="TRENDING_TAGS_LIMIT")

    # Conversation windows
    comment_window: int = Field(default=20, ge=1, alias="COMMENT_WINDOW")
    notification_window: int = Field(default=50, ge=1, alias="NOTIFICATION_WINDOW")
    message_window: int = Field(default=100, ge=1, alias="MESSAGE_WINDOW")
    user_search_limit: int = Field(default=10, ge=1, alias="USER_SEARCH_LIMIT")

    # Timers
    typing_timeout_seconds: float = Field(default=3.0, alias="TYPING_TIMEOUT_SECONDS")
    view_delay_seconds: float = Field(default=3.0, alias="VIEW_DELAY_SECONDS")
    presence_interval_seconds: float = Field(default=60.0, alias="PRESENCE_INTERVAL_SECONDS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        populate_by_name=True,
        extra="ignore",
    )

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides.

        Returns:
            The active database URL (test database if in testing mode, otherwise production)
        """
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url


settings = Settings()
