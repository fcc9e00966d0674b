from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./stoneworks.db"

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "Stoneworks Order Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Finance Controls
    # Minimum share of the grand total that must be paid on deposit invoices
    # before the factory may accept a job. 0 means "any deposit payment".
    DEPOSIT_THRESHOLD_PERCENT: float = 0.0
    DEFAULT_PAYMENT_TERMS_DAYS: int = 0
    DEFAULT_DEPOSIT_PERCENT: float = 50.0

    # Numbering
    QUOTE_NUMBER_OFFSET: int = 1000

    # Background Jobs
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TIMEZONE: str = "Africa/Addis_Ababa"
    OVERDUE_SWEEP_HOUR: int = 0  # Daily overdue sweep time (scheduler timezone)
    OVERDUE_SWEEP_MINUTE: int = 15

    # Audit
    AUDIT_LOG_PAGE_SIZE: int = 100  # Max audit entries returned per entity
    AUDIT_LOG_ENABLED: bool = True

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @field_validator('DEPOSIT_THRESHOLD_PERCENT')
    @classmethod
    def validate_deposit_threshold(cls, v):
        if v < 0 or v > 100:
            raise ValueError("DEPOSIT_THRESHOLD_PERCENT must be between 0 and 100")
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return self.CORS_ORIGINS

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
