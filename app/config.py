"""Application configuration."""
from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_env: str = "development"
    database_url: str = "sqlite:///./imports.db"
    log_file: Optional[str] = None

    # Redis (for Celery, Redis session store and progress events)
    redis_url: str = "redis://localhost:6379/0"

    # Import pipeline
    import_session_ttl_minutes: int = 30
    import_session_store: str = "memory"  # memory, redis
    import_executor: str = "background"  # background, celery
    import_default_batch_size: int = 100
    import_max_file_size_mb: int = 10

    # Lifecycle events
    import_events_enabled: bool = False
    import_webhook_urls: List[str] = []

    class Config:
        env_file = ".env"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
