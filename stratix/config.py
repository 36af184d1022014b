from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

_ROOT_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "Stratix Messaging API"
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_db: str = "stratix"

    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 7

    # Redis enables cross-process fan-out and presence keys; unset means single process
    redis_url: Optional[str] = None
    presence_ttl_seconds: int = 60
    presence_heartbeat_seconds: int = 30

    cors_origins: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:3000",
    ]
    log_level: str = "INFO"

    conversations_page_size: int = 20
    messages_page_size: int = 50
    max_page_size: int = 100

    model_config = SettingsConfigDict(
        env_file=str(_ROOT_DIR / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
