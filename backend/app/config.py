from functools import lru_cache
from pathlib import Path
from typing import Annotated, List

from pydantic import AliasChoices, AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = Field(default="Help Hub Messaging API", description="Human readable service name")
    environment: str = Field(default="development", description="Deployment environment name")
    debug: bool = Field(default=False, description="Enable debug mode")

    cors_origins: Annotated[List[AnyHttpUrl], NoDecode] = Field(
        default_factory=lambda: [
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ],
        description="List of allowed CORS origins",
    )

    database_url_override: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL", "database_url_override"),
        description="Full SQLAlchemy URL; takes precedence over the DB_* parts",
    )
    database_user: str = Field(default="helphub", validation_alias=AliasChoices("DB_USER", "database_user"))
    database_password: str = Field(default="helphub", validation_alias=AliasChoices("DB_PASSWORD", "database_password"))
    database_host: str = Field(default="db", validation_alias=AliasChoices("DB_HOST", "database_host"))
    database_port: int = Field(default=3306, validation_alias=AliasChoices("DB_PORT", "database_port"))
    database_name: str = Field(default="helphub", validation_alias=AliasChoices("DB_NAME", "database_name"))
    database_create_tables: bool = Field(
        default=False,
        description="Create missing tables on startup instead of relying on Alembic",
    )

    jwt_secret_key: str = Field(default="changeme")
    jwt_algorithm: str = Field(default="HS256")
    access_token_expire_minutes: int = Field(default=60 * 24)

    chat_message_max_length: int = Field(default=1000)
    chat_history_default_limit: int = Field(default=50)
    chat_history_max_limit: int = Field(default=100)
    chat_search_limit: int = Field(default=50)
    notification_page_size: int = Field(default=20)

    websocket_keepalive_timeout_seconds: float = Field(
        default=30.0,
        description="Idle time after which the server pings a websocket client",
    )
    websocket_keepalive_ping_interval_seconds: float = Field(
        default=30.0,
        description="Minimum interval between consecutive keepalive pings",
    )

    realtime_redis_url: str | None = Field(
        default=None,
        description="Redis URL used to fan realtime events out across instances",
    )
    realtime_nats_url: str | None = Field(
        default=None,
        description="Optional NATS URL used instead of Redis",
    )
    realtime_namespace: str = Field(default="helphub.realtime")
    realtime_node_id: str | None = Field(
        default=None,
        description="Stable identifier of this instance; generated when empty",
    )
    realtime_backend_preference: str = Field(
        default="redis",
        validation_alias=AliasChoices("REALTIME_BACKEND", "realtime_backend_preference"),
        description="Broker used for publishing realtime events (redis or nats)",
    )

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
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
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        if isinstance(v, (list, tuple, set)):
            return list(v)
        return v

    @field_validator("realtime_backend_preference", mode="before")
    @classmethod
    def normalize_backend(cls, value: str | None) -> str:
        normalized = (value or "redis").strip().lower()
        if normalized not in {"redis", "nats"}:
            raise ValueError("REALTIME_BACKEND must be 'redis' or 'nats'")
        return normalized


@lru_cache
def get_settings() -> Settings:
    return Settings()
