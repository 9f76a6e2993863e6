"""Application configuration pulled from environment variables via pydantic."""
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.logging_utils import get_tagged_logger
logger = get_tagged_logger(__name__, tag="config")


class Settings(BaseSettings):
    """Environment-driven configuration for the gymcore service."""
    model_config = SettingsConfigDict(env_prefix="GYM_", extra="ignore")

    cache_prefix: str = "gym_cache_"
    cache_redis_url: str | None = None
    backend_source: str = "sql"  # options: sql, memory
    database_url: str = "sqlite:///./gym.db"
    profiles_table: str = "profiles"
    plans_table: str = "plans"
    notification_ttl_seconds: int = 300
    expiry_warning_days: int = 5
    renewal_lookahead_days: int = 7
    currency_symbol: str = "$"
    log_level: str = "INFO"

    @field_validator("cache_prefix", mode="after")
    @classmethod
    def require_prefix(cls, v: str) -> str:
        """An empty namespace would let clear_all wipe a shared medium."""
        if not v:
            raise ValueError("cache_prefix must not be empty")
        return v

    @field_validator("notification_ttl_seconds", "expiry_warning_days", "renewal_lookahead_days", mode="after")
    @classmethod
    def require_positive(cls, v: int) -> int:
        """Windows and TTLs are counted forward from now."""
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v


settings = Settings()


if __name__ == "__main__":
    logger.setLevel("DEBUG")
    logger.debug(f"Loaded settings: {settings.model_dump_json(indent=4)}")
