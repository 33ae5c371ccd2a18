from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


class Settings(BaseSettings):
    # App
    APP_NAME: str = "Spendwise Backend"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://localhost:5432/spendwise"
    DATABASE_POOL_SIZE: int = 5
    DATABASE_MAX_OVERFLOW: int = 10

    # Database migrations
    USE_ALEMBIC: bool = True  # If True, skip create_all() in init_db() (Alembic handles migrations)

    # Service clock used for period and month boundaries
    TIMEZONE: str = "UTC"

    # Reconciliation
    UNCATEGORIZED_CATEGORY_NAME: str = "Uncategorized"
    UNCATEGORIZED_CATEGORY_COLOR: str = "#9CA3AF"
    MISC_CATEGORY_NAME: str = "Misc"
    LEGACY_CATEGORY_SENTINEL: str = "misc"
    # Legacy "misc" transactions without a Misc category go to Uncategorized
    LEGACY_SENTINEL_FALLBACK_TO_UNCATEGORIZED: bool = True

    # Trends
    TREND_DEFAULT_MONTHS: int = 6
    TREND_MAX_MONTHS: int = 24
    TREND_STABLE_THRESHOLD_PCT: float = 1.0

    # Aggregation: "skip" drops groups whose category is gone, "bucket" reports them as "Unknown"
    DANGLING_CATEGORY_POLICY: str = "skip"

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def convert_database_url(cls, v: str) -> str:
        """Convert postgresql:// to postgresql+asyncpg:// for async support."""
        if v and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    @field_validator("TIMEZONE")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @field_validator("DANGLING_CATEGORY_POLICY")
    @classmethod
    def validate_dangling_policy(cls, v: str) -> str:
        v = v.lower()
        if v not in ("skip", "bucket"):
            raise ValueError("DANGLING_CATEGORY_POLICY must be 'skip' or 'bucket'")
        return v

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.TIMEZONE)

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Allow extra env variables to be ignored


@lru_cache()
def get_settings() -> Settings:
    return Settings()
