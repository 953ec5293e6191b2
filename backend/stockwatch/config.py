"""Application configuration via Pydantic Settings."""

from typing import Optional, Tuple

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./stockwatch.db"

    @model_validator(mode="after")
    def fix_database_url(self) -> "Settings":
        """Hosted Postgres hands out postgres:// but asyncpg needs postgresql+asyncpg://"""
        url = self.DATABASE_URL
        if url.startswith("postgresql://"):
            self.DATABASE_URL = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgres://"):
            self.DATABASE_URL = url.replace("postgres://", "postgresql+asyncpg://", 1)
        return self

    # App
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Scheduling
    CHECK_INTERVAL_MINUTES: int = 5
    MAX_CHECK_INTERVAL_MINUTES: int = 59
    KEYWORD_CHECK_INTERVAL_MINUTES: int = 10
    SCHEDULER_TICK_SECONDS: int = 60

    # Check pass
    SCRAPE_CONCURRENCY: int = 3
    SCRAPE_JITTER_MIN_SECONDS: float = 0.8
    SCRAPE_JITTER_MAX_SECONDS: float = 2.0
    PRICE_DROP_THRESHOLD: float = 0.05

    # Discovery
    WATCH_DELAY_MIN_SECONDS: float = 3.0
    WATCH_DELAY_MAX_SECONDS: float = 5.0
    DISCOVERY_PAGE_DELAY_SECONDS: float = 0.6
    SEARCH_PAGE_DELAY_SECONDS: float = 0.8

    # HTTP transport
    MIN_REQUEST_INTERVAL_MS: int = 1500
    REQUEST_JITTER_MS: int = 500
    HTTP_TIMEOUT_MS: int = 15000
    HTTP_MAX_CONTENT_LENGTH: int = 4 * 1024 * 1024
    RESOLVE_DNS: bool = True

    # Headless rendering
    RENDER_HEADLESS: bool = True
    RENDER_TIMEOUT_MS: int = 30000
    RENDER_SETTLE_MS: int = 3000
    RENDER_GRACE_MS: int = 5000

    # Cart probing
    ORDER_PROBE_QUANTITY: int = 99

    # Telegram
    TELEGRAM_BOT_TOKEN: str = ""
    TELEGRAM_CHAT_ID: str = ""
    QUIET_HOURS: str = ""  # e.g. "23-7"

    def get_quiet_hours(self) -> Optional[Tuple[int, int]]:
        """Parse QUIET_HOURS into a (start_hour, end_hour) pair.

        Returns:
            Tuple of hours or None if unset or malformed
        """
        if not self.QUIET_HOURS:
            return None
        parts = [p.strip() for p in self.QUIET_HOURS.split("-")]
        if len(parts) != 2 or not all(p.isdigit() for p in parts):
            return None
        start, end = int(parts[0]), int(parts[1])
        if not (0 <= start < 24 and 0 <= end < 24):
            return None
        return start, end


settings = Settings()
