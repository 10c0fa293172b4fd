from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-wide configuration, resolved once at startup."""

    APP_NAME: str = "socialchat"
    ENV: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Mongo
    MONGODB_URI: str = "mongodb://localhost:27017"
    MONGODB_DB: str = "social_media_db"

    # Realtime fan-out across processes; in-process only when unset
    REDIS_URL: str | None = None

    # Session tokens
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_TTL_MINUTES: int = 60 * 24
    JWT_LEEWAY_SECONDS: int = 10
    IDENTITY_TIMEOUT_SECONDS: float = 5.0

    # Media
    UPLOAD_DIR: str = "uploads"
    MEDIA_BASE_URL: str = "/uploads"
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024

    HISTORY_PAGE_SIZE: int = 50
    HISTORY_MAX_PAGE_SIZE: int = 200

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
