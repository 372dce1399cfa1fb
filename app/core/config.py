from pydantic_settings import BaseSettings
from typing import Optional
from dotenv import load_dotenv
import os

# Populate os.environ before the defaults below are evaluated
load_dotenv()


class Settings(BaseSettings):
    # Environment configuration
    environment: str = os.getenv("ENVIRONMENT", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Server binding (used by run.py)
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "3000"))

    # Database configuration (PostgreSQL via asyncpg)
    database_url: Optional[str] = os.getenv("DATABASE_URL", "")
    database_echo: bool = os.getenv("DATABASE_ECHO", "false").lower() == "true"
    auto_create_tables: bool = os.getenv("AUTO_CREATE_TABLES", "true").lower() == "true"
    database_timeout_seconds: float = 10.0

    # Frontend URL (for CORS and checkout redirects)
    frontend_url: str = os.getenv("FRONTEND_URL", "http://localhost:3000")

    # Stripe configuration
    stripe_secret_key: Optional[str] = os.getenv("STRIPE_SECRET_KEY")
    stripe_webhook_secret: Optional[str] = os.getenv("STRIPE_WEBHOOK_SECRET")
    stripe_price_id: Optional[str] = os.getenv("STRIPE_PRICE_ID")
    stripe_timeout_seconds: float = 10.0
    webhook_tolerance_seconds: int = 300

    # Period end used when Stripe does not report one
    fallback_period_days: int = 30

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
