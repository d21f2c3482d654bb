# drink_diary/settings/config.py  (Pydantic v2)
from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    # ---------- Telegram ----------
    TELEGRAM_BOT_TOKEN: str = Field(default="")
    # Share links are rendered as <PUBLIC_BASE_URL>/q/<token>
    PUBLIC_BASE_URL: str = Field(default="http://localhost:8000")

    # ---------- Database ----------
    DATABASE_URL: str = Field(default="sqlite+aiosqlite:///./data/drinks.sqlite")
    # Run metadata.create_all on startup (always done for SQLite)
    DB_CREATE_ALL: bool = Field(default=False)

    # ---------- Text polish (OpenAI-compatible chat completions) ----------
    POLISH_API_KEY: Optional[str] = Field(default=None)
    POLISH_BASE_URL: str = Field(default="https://openai.api.proxyapi.ru/v1")
    POLISH_MODEL: str = Field(default="openai/gpt-4o-mini")
    POLISH_TIMEOUT_SECONDS: float = Field(default=60.0)

    # ---------- Backups ----------
    BACKUP_POLL_INTERVAL_SECONDS: int = Field(default=60, ge=1)
    BACKUP_RETRY_MINUTES: int = Field(default=120, ge=1)
    BACKUP_BATCH_SIZE: int = Field(default=200, ge=1)
    DEFAULT_BACKUP_FREQUENCY: Literal["off", "weekly", "biweekly", "monthly"] = Field(default="weekly")

    # ---------- Runtime ----------
    APP_TZ: str = Field(default="UTC")
    LOG_LEVEL: str = Field(default="INFO")
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8000, ge=1, le=65535)

    # ---------- pydantic-settings config ----------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,  # allow lower/upper env names
        extra="ignore",
    )

    @property
    def public_base_url(self) -> str:
        return self.PUBLIC_BASE_URL.rstrip("/")


settings = Settings()
