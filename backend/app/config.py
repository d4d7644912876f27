from functools import lru_cache
from pathlib import Path
from typing import Annotated, List

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = Field(default="GreConnect API", env="APP_NAME", description="Human readable service name")
    environment: str = Field(default="development", env="ENVIRONMENT", description="Deployment environment name")
    debug: bool = Field(default=False, env="DEBUG", description="Enable debug mode")

    cors_origins: Annotated[List[AnyHttpUrl], NoDecode] = Field(
        default_factory=lambda: [
            "http://localhost",
            "http://localhost:3000",
            "http://localhost:8080",
            "http://127.0.0.1",
            "http://127.0.0.1:8080",
        ],
        env="CORS_ORIGINS",
        description="List of allowed CORS origins",
    )
    cors_allow_origin_regex: str | None = Field(
        default=r"^https?://(localhost|127\.0\.0\.1|\[::1\])(:\d+)?$",
        env="CORS_ALLOW_ORIGIN_REGEX",
        description="Optional regular expression that matches allowed CORS origins",
    )

    database_user: str = Field(default="greconnect", env="DB_USER")
    database_password: str = Field(default="greconnect", env="DB_PASSWORD")
    database_host: str = Field(default="db", env="DB_HOST")
    database_port: int = Field(default=3306, env="DB_PORT")
    database_name: str = Field(default="greconnect", env="DB_NAME")
    database_url_override: str | None = Field(
        default=None,
        validation_alias="DATABASE_URL",
        description="Full SQLAlchemy URL; takes precedence over the DB_* parts.",
    )

    jwt_secret_key: str = Field(default="changeme", env="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", env="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=60 * 24 * 7, env="ACCESS_TOKEN_EXPIRE_MINUTES")

    chat_history_default_limit: int = Field(default=50, env="CHAT_HISTORY_DEFAULT_LIMIT")
    chat_history_max_limit: int = Field(default=100, env="CHAT_HISTORY_MAX_LIMIT")
    chat_message_max_length: int = Field(default=5000, env="CHAT_MESSAGE_MAX_LENGTH")
    call_history_limit: int = Field(default=20, env="CALL_HISTORY_LIMIT")
    notification_page_size: int = Field(default=20, env="NOTIFICATION_PAGE_SIZE")

    websocket_keepalive_timeout_seconds: float = Field(
        default=30, env="WEBSOCKET_KEEPALIVE_TIMEOUT_SECONDS"
    )
    websocket_keepalive_ping_interval_seconds: float = Field(
        default=25, env="WEBSOCKET_KEEPALIVE_PING_INTERVAL_SECONDS"
    )

    realtime_redis_url: str | None = Field(
        default=None,
        env="REALTIME_REDIS_URL",
        description="Redis URL used to relay room events between instances.",
    )
    realtime_namespace: str = Field(default="greconnect.realtime", env="REALTIME_NAMESPACE")
    realtime_node_id: str | None = Field(
        default=None,
        env="REALTIME_NODE_ID",
        description="Stable identifier of this instance; generated when unset.",
    )

    agora_app_id: str | None = Field(default=None, env="AGORA_APP_ID")
    agora_app_certificate: str | None = Field(default=None, env="AGORA_APP_CERTIFICATE")
    agora_token_ttl_seconds: int = Field(
        default=3600,
        env="AGORA_TOKEN_TTL_SECONDS",
        description="Lifetime of issued media tokens.",
    )

    push_notifications_enabled: bool = Field(
        default=False,
        env="PUSH_NOTIFICATIONS_ENABLED",
        description="Toggle device push notifications through Firebase Cloud Messaging.",
    )
    firebase_credentials_path: Path | None = Field(
        default=None,
        env="FIREBASE_CREDENTIALS_PATH",
        description="Filesystem path to Firebase service account credentials.",
    )
    push_token_min_length: int = Field(
        default=50,
        env="PUSH_TOKEN_MIN_LENGTH",
        description="Stored device tokens shorter than this are treated as malformed.",
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
        if v in (None, "", Ellipsis):
            return v
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        if isinstance(v, (list, tuple, set)):
            return list(v)
        return v

    @field_validator("firebase_credentials_path", mode="before")
    @classmethod
    def resolve_firebase_credentials(
        cls, value: str | Path | None
    ) -> Path | None:
        if value in (None, "", Ellipsis):
            return None
        if isinstance(value, Path):
            return value.resolve()
        return Path(value).resolve()


@lru_cache
def get_settings() -> Settings:
    return Settings()
