from functools import lru_cache
from pathlib import Path
from typing import Annotated, List

from pydantic import AliasChoices, AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = Field(default="Parley API", env="APP_NAME", description="Human readable service name")
    environment: str = Field(default="development", env="ENVIRONMENT", description="Deployment environment name")
    debug: bool = Field(default=False, env="DEBUG", description="Enable debug mode")

    cors_origins: Annotated[List[AnyHttpUrl], NoDecode] = Field(
        default_factory=lambda: [
            "http://localhost",
            "http://localhost:3000",
            "http://127.0.0.1",
        ],
        env="CORS_ORIGINS",
        description="List of allowed CORS origins",
    )
    cors_allow_origin_regex: str | None = Field(
        default=r"^https?://(localhost|127\.0\.0\.1|\[::1\])(:\d+)?$",
        env="CORS_ALLOW_ORIGIN_REGEX",
        description="Optional regular expression that matches allowed CORS origins",
    )

    database_user: str = Field(default="parley", env="DB_USER")
    database_password: str = Field(default="parley", env="DB_PASSWORD")
    database_host: str = Field(default="db", env="DB_HOST")
    database_port: int = Field(default=3306, env="DB_PORT")
    database_name: str = Field(default="parley", env="DB_NAME")
    database_url_override: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL", "DATABASE_URL_OVERRIDE"),
        description="Full SQLAlchemy URL taking precedence over the DB_* fields",
    )

    jwt_secret_key: str = Field(default="changeme", env="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", env="JWT_ALGORITHM")

    chat_history_default_limit: int = Field(default=30, env="CHAT_HISTORY_DEFAULT_LIMIT")
    chat_history_max_limit: int = Field(default=100, env="CHAT_HISTORY_MAX_LIMIT")
    chat_search_default_limit: int = Field(default=50, env="CHAT_SEARCH_DEFAULT_LIMIT")
    chat_search_max_limit: int = Field(default=100, env="CHAT_SEARCH_MAX_LIMIT")
    chat_search_min_query_length: int = Field(default=2, env="CHAT_SEARCH_MIN_QUERY_LENGTH")
    chat_message_max_length: int = Field(default=4000, env="CHAT_MESSAGE_MAX_LENGTH")
    typing_requires_membership: bool = Field(
        default=False,
        env="TYPING_REQUIRES_MEMBERSHIP",
        description="Reject typing indicators from users without an active membership.",
    )

    websocket_keepalive_timeout_seconds: float = Field(
        default=30, env="WEBSOCKET_KEEPALIVE_TIMEOUT_SECONDS"
    )
    websocket_keepalive_ping_interval_seconds: float = Field(
        default=25, env="WEBSOCKET_KEEPALIVE_PING_INTERVAL_SECONDS"
    )
    realtime_send_timeout_seconds: float = Field(
        default=2.0,
        env="REALTIME_SEND_TIMEOUT_SECONDS",
        description="Upper bound for a single websocket delivery during fan-out.",
    )
    realtime_typing_ttl_seconds: float = Field(default=6.0, env="REALTIME_TYPING_TTL_SECONDS")

    media_base_url: str = Field(default="/api/media", env="MEDIA_BASE_URL")
    avatar_base_url: str = Field(
        default="/api/media/avatars",
        env="AVATAR_BASE_URL",
        description="Base URL for serving user avatars",
    )

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return (
            f"mysql+pymysql://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v):  # type: ignore[override]
        if v in (None, "", Ellipsis):
            return v
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        if isinstance(v, (list, tuple, set)):
            return list(v)
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()
