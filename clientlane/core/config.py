import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import List, Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: str = "sqlite+pysqlite:///./clientlane.db"
    DB_ISOLATION_LEVEL: str = "SERIALIZABLE"  # used for admission transactions
    DB_AUTO_CREATE: bool = True
    DB_ECHO: bool = False

    # Sessions
    JWT_SECRET: str = "dev-insecure-secret"
    JWT_ALGORITHM: str = "HS256"
    SESSION_TTL_DAYS: int = 30

    # One-time codes and links
    OTP_TTL_MINUTES: int = 10
    OTP_MAX_ATTEMPTS: int = 5
    MAGIC_LINK_TTL_HOURS: int = 24
    PASSWORD_RESET_TTL_MINUTES: int = 60

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_PRO_PRICE_ID: Optional[str] = None
    STRIPE_AGENCY_PRICE_ID: Optional[str] = None
    NEXT_PUBLIC_STRIPE_PUBLISHABLE_KEY: Optional[str] = None

    # App URLs
    APP_BASE_URL: str = "http://localhost:3000"
    CORS_ORIGINS: str = "http://localhost:3000"  # comma-separated

    # Email
    EMAIL_FROM: str = "Clientlane <no-reply@clientlane.app>"

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("clientlane")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "JWT_SECRET",
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if cfg.ENV.lower() == "production" and cfg.JWT_SECRET == Settings.model_fields["JWT_SECRET"].default:
        missing.append("JWT_SECRET (default value)")
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
