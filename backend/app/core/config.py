"""Application configuration"""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # API
    API_V1_PREFIX: str = "/api"
    PROJECT_NAME: str = "Arkline Billing API"
    VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Security
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRATION_MINUTES: int = 1440  # 24 hours

    # Database
    DATABASE_URL: str

    # Stripe
    STRIPE_SECRET_KEY: str
    STRIPE_WEBHOOK_SECRET: str
    STRIPE_API_VERSION: str = "2024-12-18.acacia"

    # Stripe price identifiers for plan changes
    # WHY: The admin gateway resolves a plan key to a price before
    # touching the processor. Missing values reject the request early.
    STRIPE_PRICE_MONTHLY: Optional[str] = None  # price_xxx
    STRIPE_PRICE_ANNUAL: Optional[str] = None  # price_xxx

    # Founding member programme
    FOUNDING_PRICE_IDS: list[str] = []
    FOUNDING_MEMBER_CAP: int = 50

    # Unit prices used by the metrics rollup (cents)
    MONTHLY_PRICE_CENTS: int = 1999
    ANNUAL_PRICE_CENTS: int = 14999

    # Invite codes
    INVITE_CODE_PREFIX: str = "ARK"
    INVITE_DEEP_LINK_SCHEME: str = "arkline"
    ADMIN_INVITE_EXPIRY_DAYS: int = 7
    CHECKOUT_INVITE_EXPIRY_DAYS: int = 15

    # Checkout redirects for admin-initiated sessions
    CHECKOUT_SUCCESS_URL: str = "https://arkline.io/payment-success"
    CHECKOUT_CANCEL_URL: str = "https://arkline.io"

    # Email
    RESEND_API_KEY: Optional[str] = None
    EMAIL_FROM: str = "Arkline <onboarding@resend.dev>"

    # CORS
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    @property
    def async_database_url(self) -> str:
        """Get async database URL"""
        return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")


settings = Settings()
