from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


_PROJECT_ROOT = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    """
    App configuration.

    Values come from the environment, then `config.env` / `.env` at the
    repository root or the current directory.
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

    environment: str = Field(default="development", validation_alias="ENVIRONMENT")

    db_host: str = Field(default="localhost", validation_alias="DB_HOST")
    db_port: int = Field(default=5432, validation_alias="DB_PORT")
    db_user: str = Field(default="pos", validation_alias="DB_USER")
    db_password: str = Field(default="pos", validation_alias="DB_PASSWORD")
    db_name: str = Field(default="pos", validation_alias="DB_NAME")
    # Full SQLAlchemy URL, overrides the DB_* fields when set (e.g. sqlite for local runs)
    database_url_override: str | None = Field(default=None, validation_alias="DATABASE_URL")

    secret_key: str = Field(default="CHANGE_THIS_IN_PRODUCTION", validation_alias="SECRET_KEY")
    algorithm: str = Field(default="HS256", validation_alias="ALGORITHM")
    access_token_expire_minutes: int = Field(default=12 * 60, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    redis_url: str = Field(default="redis://localhost:6379", validation_alias="REDIS_URL")

    # Legacy login behaviour: create a waiter profile when an authenticated
    # principal has none. Off unless explicitly enabled.
    auto_provision_missing_profile: bool = Field(
        default=False, validation_alias="AUTO_PROVISION_MISSING_PROFILE"
    )
    low_stock_threshold: int = Field(default=5, validation_alias="LOW_STOCK_THRESHOLD")
    # Whether waiters may keep adding lines to an order already sent to the kitchen
    allow_items_after_sent: bool = Field(default=True, validation_alias="ALLOW_ITEMS_AFTER_SENT")

    # CORS configuration
    cors_origins: str = Field(
        default="http://localhost:3000",
        validation_alias="CORS_ORIGINS"
    )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        # SQLModel uses SQLAlchemy under the hood; this uses the psycopg driver (v3).
        return (
            f"postgresql+psycopg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )


settings = Settings()
