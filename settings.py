import os
from typing import Optional

from pydantic import BaseModel


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Runtime configuration, read once from the environment."""

    database_url: Optional[str] = None
    database_name: Optional[str] = None

    jwt_secret: str = "dev-secret-change-me"
    jwt_expires_min: int = 60 * 24 * 7

    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_api_base: str = "https://api.stripe.com"
    webhook_tolerance_sec: int = 300

    frontend_url: Optional[str] = None

    # Pricing rules: flat 10% tax, free shipping
    tax_rate: float = 0.10
    shipping_cost: float = 0.0
    low_stock_threshold: int = 10

    admin_email: Optional[str] = None
    admin_password: Optional[str] = None
    admin_name: str = "Admin"

    debug: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL"),
            database_name=os.getenv("DATABASE_NAME"),
            jwt_secret=os.getenv("JWT_SECRET", "dev-secret-change-me"),
            jwt_expires_min=int(os.getenv("JWT_EXPIRES_MIN", str(60 * 24 * 7))),
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY") or None,
            stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET") or None,
            stripe_api_base=os.getenv("STRIPE_API_BASE", "https://api.stripe.com"),
            frontend_url=os.getenv("FRONTEND_URL") or None,
            admin_email=os.getenv("ADMIN_EMAIL") or None,
            admin_password=os.getenv("ADMIN_PASSWORD") or None,
            admin_name=os.getenv("ADMIN_NAME", "Admin"),
            debug=_env_bool("DEBUG"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


settings = Settings.from_env()


def get_settings() -> Settings:
    return settings
