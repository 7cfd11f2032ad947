"""Application configuration using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application environment
    env: Literal["dev", "test", "staging", "prod"] = "dev"

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/postpartum.db"
    # Seconds a writer waits for the SQLite write lock before failing
    sqlite_busy_timeout_seconds: float = 30.0

    # Security (bearer tokens identify the acting staff member)
    secret_key: str = "CHANGE_ME_IN_PRODUCTION"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60

    # Logging
    log_level: str = "INFO"

    # Triage ruleset shipped in postpartum_triage/rulesets
    ruleset_filename: str = "postpartum-de-v1.0.0.yaml"

    # Database initialization and one-time import of the flat-file logs
    init_db_on_startup: bool = True
    legacy_case_log_path: str = "logs/postpartum-history.jsonl"
    legacy_change_log_path: str = "logs/postpartum-changes.jsonl"

    # Bounds for "recent" listings
    recent_limit_default: int = 50
    recent_limit_max: int = 200

    @property
    def is_dev(self) -> bool:
        """Check if running in development mode."""
        return self.env == "dev"

    @property
    def is_prod(self) -> bool:
        """Check if running in production mode."""
        return self.env == "prod"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
