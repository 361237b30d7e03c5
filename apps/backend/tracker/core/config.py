from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "tiny-tracker"
    database_url: str = "sqlite:///./events.db"

    # seconds; a write slower than this is dropped and answered 503
    write_timeout_s: float = 2.0
    summary_timeout_s: float = 15.0

    max_body_bytes: int = 16 * 1024
    default_window_hours: int = 24

    # Empty list => no CORS middleware at all. Set per deployment.
    cors_allow_origins: List[str] = []
    cors_allow_origin_regex: Optional[str] = None

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "ignore"


def get_settings() -> Settings:
    return Settings()
