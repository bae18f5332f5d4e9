from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "test", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./rewards.db"
    database_echo: bool = False
    log_level: str = "INFO"

    # Internal API security (order / review / subscription flows)
    internal_api_key: str = ""

    # Tracing
    tracing_enabled: bool = True

    # Award engine
    loyalty_write_max_attempts: int = Field(default=3, ge=1)
    loyalty_transactions_page_limit: int = Field(default=100, ge=1)

    # Earn rules surfaced on the member dashboard
    loyalty_purchase_points_per_unit: int = Field(default=1, ge=1)
    loyalty_review_points: int = Field(default=50, ge=1)
    loyalty_subscription_points: int = Field(default=200, ge=1)


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
