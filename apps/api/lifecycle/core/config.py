"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Database (any SQLAlchemy URL; PostgreSQL in production)
    DATABASE_URL: str = "sqlite:///./lifecycle.db"

    # Internal scheduled endpoints (cron jobs)
    INTERNAL_SECRET: str = ""  # Secret for /internal/scheduled/* endpoints

    # Resend transport
    RESEND_API_KEY: str = ""
    RESEND_FROM_EMAIL: str = "demo@resend.dev"
    RESEND_API_BASE_URL: str = "https://api.resend.com"
    RESEND_TIMEOUT_SECONDS: float = 20.0

    # Flow scheduler tick
    FLOW_BATCH_LIMIT: int = 20

    # Send-time optimizer histogram cache
    OPTIMIZER_CACHE_TTL_SECONDS: float = 60.0

    LOG_LEVEL: str = "INFO"

    @property
    def is_dev(self) -> bool:
        return self.ENV == "dev"


settings = Settings()
