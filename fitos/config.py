"""
Application Configuration

Centralized configuration management using Pydantic settings.
Loads from environment variables with fallback to .env file.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List


DEV_SECRET_KEY = "dev-secret-key-change-in-production"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Note: get_settings() is cached, so tests that change the environment
    must call get_settings.cache_clear().
    """

    # Database settings
    DATABASE_URL: str = "postgresql://localhost/fitos_dev"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40

    # Access tokens (JWT)
    SECRET_KEY: str = DEV_SECRET_KEY
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    JWT_ISSUER: str = "fitos"
    JWT_AUDIENCE: str = "fitos-app"

    # Server-side sessions
    SESSION_EXPIRE_DAYS: int = 7
    SESSION_UPDATE_AGE_HOURS: int = 24
    SESSION_COOKIE_NAME: str = "fitos.session_token"
    TRUSTED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Login protection
    MAX_LOGIN_ATTEMPTS: int = 5
    LOCKOUT_MINUTES: int = 15
    PASSWORD_RESET_EXPIRE_MINUTES: int = 60

    # Redis for caching and rate limiting
    REDIS_URL: str = "redis://localhost:6379/0"
    CACHE_ENABLED: bool = True

    # Application settings
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_PER_MINUTE: int = 60
    RATE_LIMIT_BURST: int = 10

    # Payment providers. Empty credentials switch the gateways to mock mode.
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_API_BASE: str = "https://api.stripe.com/v1"
    MERCADOPAGO_ACCESS_TOKEN: str = ""
    MERCADOPAGO_WEBHOOK_SECRET: str = ""
    MERCADOPAGO_API_BASE: str = "https://api.mercadopago.com"
    PAYMENT_TIMEOUT_SECONDS: float = 15.0

    # Web push (VAPID)
    VAPID_PUBLIC_KEY: str = ""
    VAPID_PRIVATE_KEY: str = ""
    VAPID_SUBJECT: str = "mailto:admin@fitos.com"
    PUSH_MAX_WORKERS: int = 8

    # Cost tracking
    COST_DEFAULT_CURRENCY: str = "BRL"
    COST_ALERT_WARNING: float = 75.0
    COST_ALERT_CRITICAL: float = 90.0

    class Config:
        env_file = ".env"
        case_sensitive = True

    def model_post_init(self, __context) -> None:
        if self.ENVIRONMENT.lower() == "production":
            if self.SECRET_KEY == DEV_SECRET_KEY or len(self.SECRET_KEY) < 32:
                raise ValueError("SECRET_KEY must be set to a strong value (32+ chars) in production.")
        if self.ALGORITHM != "HS256":
            raise ValueError(f"Unsupported ALGORITHM={self.ALGORITHM!r}. Allowed: HS256")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Using lru_cache ensures we only instantiate settings once.
    """
    return Settings()
