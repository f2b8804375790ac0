"""Application configuration management."""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str
    DB_POOL_MIN_SIZE: int = 5
    DB_POOL_MAX_SIZE: int = 20
    DB_ACQUIRE_TIMEOUT: float = 10.0  # Seconds to wait for a pooled connection
    DB_COMMAND_TIMEOUT: float = 30.0  # Seconds before a statement is aborted

    # JWT Configuration
    SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    # Join PINs
    PIN_LENGTH: int = 6
    PIN_MAX_ATTEMPTS: int = 5

    # Quiz gate
    QUIZ_PASS_THRESHOLD: float = 75.0
    QUIZ_QUESTION_COUNT: Optional[int] = None  # None = serve the whole bank

    # Voting ranges (inclusive)
    VOTE_SCORE_MIN: int = 1
    VOTE_SCORE_MAX: int = 5
    VOTE_PRIORITY_MIN: int = 1
    VOTE_PRIORITY_MAX: int = 10

    # Pagination
    DEFAULT_PAGE_LIMIT: int = 20
    MAX_PAGE_LIMIT: int = 100

    # Environment
    ENVIRONMENT: str = "development"

    # Logging (empty = per-environment default)
    LOG_LEVEL: Optional[str] = None
    LOG_FORMAT: Optional[str] = None  # "json" or "text"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]


settings = Settings()


def get_settings() -> Settings:
    return settings
