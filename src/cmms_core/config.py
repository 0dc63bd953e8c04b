"""Application configuration loaded from the environment."""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """System-wide configuration.

    Every field can be overridden with a ``CMMS_``-prefixed environment
    variable, e.g. ``CMMS_DATABASE_URL``.
    """

    model_config = SettingsConfigDict(env_prefix="CMMS_", env_file=".env", extra="ignore")

    # Database
    database_url: str = "sqlite:///./cmms.db"
    create_tables: bool = False

    # API
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]
    log_level: str = "INFO"

    # Identity used for unattended work (scheduled generation, auto-approval)
    system_actor_id: int = 1

    # Work order defaults
    routine_due_hours: int = 48
    default_order_duration_hours: float = 4.0
    workday_hours: float = 8.0


@lru_cache
def get_settings() -> Settings:
    """Return the cached settings instance."""
    return Settings()
