from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


_PROJECT_ROOT = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    """
    App configuration.

    Values come from the environment, `config.env` or `.env` (repository root
    first, then the current directory).
    """

    model_config = SettingsConfigDict(
        env_file=(
            str(_PROJECT_ROOT / "config.env"),
            str(_PROJECT_ROOT / ".env"),
            "config.env",
            ".env",
        ),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    db_host: str = Field(default="localhost", validation_alias="DB_HOST")
    db_port: int = Field(default=5432, validation_alias="DB_PORT")
    db_user: str = Field(default="menuboard", validation_alias="DB_USER")
    db_password: str = Field(default="menuboard", validation_alias="DB_PASSWORD")
    db_name: str = Field(default="menuboard", validation_alias="DB_NAME")
    # Full SQLAlchemy URL; wins over the DB_* parts when set (e.g. "sqlite://" for tests)
    database_url_override: str = Field(default="", validation_alias="DATABASE_URL")

    redis_url: str = Field(default="redis://localhost:6379", validation_alias="REDIS_URL")

    secret_key: str = Field(default="CHANGE_THIS_IN_PRODUCTION", validation_alias="SECRET_KEY")
    algorithm: str = Field(default="HS256", validation_alias="ALGORITHM")
    access_token_expire_minutes: int = Field(default=30, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")
    environment: str = Field(default="development", validation_alias="ENVIRONMENT")

    cors_origins: str = Field(
        default="http://localhost:5173",
        validation_alias="CORS_ORIGINS"
    )

    # Base of the guest-facing menu links handed out as QR codes
    public_base_url: str = Field(default="http://localhost:5173", validation_alias="PUBLIC_BASE_URL")
    order_alert_sound_url: str = Field(
        default="https://cdn.pixabay.com/audio/2022/07/26/audio_124bfae1b2.mp3",
        validation_alias="ORDER_ALERT_SOUND_URL",
    )

    # When false, done/cancelled orders can be moved back to any status
    order_terminal_statuses_locked: bool = Field(default=True, validation_alias="ORDER_TERMINAL_STATUSES_LOCKED")
    # Seconds between re-seed attempts while the realtime channel is down
    feed_reconnect_delay: float = Field(default=5.0, validation_alias="FEED_RECONNECT_DELAY")

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        # SQLModel uses SQLAlchemy under the hood; this uses the psycopg driver (v3).
        return (
            f"postgresql+psycopg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    def public_menu_url(self, restaurant_id: str) -> str:
        return f"{self.public_base_url.rstrip('/')}/menu/{restaurant_id}"


settings = Settings()
