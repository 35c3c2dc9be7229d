from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application configuration loaded from environment variables.
    Uses pydantic for validation and type safety.
    """
    environment: str = "development"
    debug: bool = False

    # "database" persists through SQLAlchemy, "memory" keeps everything in
    # process and is lost on restart
    storage_backend: Literal["database", "memory"] = "database"
    database_url: str = "sqlite:///./skillshare.db"

    # Session lifetime in hours
    session_expire_hours: int = 24

    # Cookie security settings
    # secure=True enforces HTTPS only - must be True in production
    cookie_name: str = "session_id"
    cookie_secure: bool = False
    cookie_domain: str = "localhost"
    cookie_httponly: bool = True
    cookie_samesite: str = "lax"

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def is_development(self) -> bool:
        return self.environment.lower() in ("development", "dev", "local")


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings instance. Load once, reuse throughout application lifecycle.
    """
    return Settings()
