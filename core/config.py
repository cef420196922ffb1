# ==================================================================================
# core/config.py: Service Configuration (Database + JWT + Stripe + Pydantic v2)
# ==================================================================================
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import ValidationError
import logging
import sys

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    # ------------------------
    # DATABASE CONFIG
    # ------------------------
    DATABASE_URL: str

    # ------------------------
    # SECURITY CONFIG
    # ------------------------
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # ------------------------
    # FRONTEND CONFIG
    # ------------------------
    FRONTEND_URL: str = "http://localhost:5173"
    CORS_ORIGINS: str = "http://localhost:5173,http://127.0.0.1:5173"

    # ------------------------
    # STRIPE / PAYMENT CONFIG
    # ------------------------
    STRIPE_SECRET_KEY: str | None = None
    STRIPE_WEBHOOK_SECRET: str | None = None
    STRIPE_WEBHOOK_TOLERANCE: int = 300
    STRIPE_PRICE_LOOKUP_PREFIX: str = "petshop"

    # ------------------------
    # SUBSCRIPTION RULES
    # ------------------------
    TRIAL_DAYS: int = 30

    # ------------------------
    # ENVIRONMENT SETTINGS
    # ------------------------
    ENVIRONMENT: str = "development"  # 'development' | 'production' | 'test'
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    @property
    def IS_PRODUCTION(self) -> bool:
        """Convenience helper to check if running in production"""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    def checkout_success_url(self, origin: str | None = None) -> str:
        base = (origin or self.FRONTEND_URL).rstrip("/")
        return f"{base}/settings?tab=subscription&checkout=success"

    def checkout_cancel_url(self, origin: str | None = None) -> str:
        base = (origin or self.FRONTEND_URL).rstrip("/")
        return f"{base}/settings?tab=subscription&checkout=cancel"

    def portal_return_url(self, origin: str | None = None) -> str:
        base = (origin or self.FRONTEND_URL).rstrip("/")
        return f"{base}/settings?tab=subscription"

    # ------------------------
    # Pydantic v2 Settings
    # ------------------------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


# ------------------------
# Global Settings Loader
# ------------------------
try:
    settings = Settings()
    logger.info("Environment: %s, Debug: %s", settings.ENVIRONMENT, settings.DEBUG)
except ValidationError as e:
    logger.error("Environment configuration error, missing or invalid settings:\n%s", e)
    sys.exit(1)
