import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Stripe (billing processor)
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None

    # Payment plan -> processor price mapping (names kept from the web app)
    PAYMENTS_BASIC_SUBSCRIPTION_PLAN_ID: Optional[str] = None
    PAYMENTS_PROFESSIONAL_SUBSCRIPTION_PLAN_ID: Optional[str] = None
    PAYMENTS_ENTERPRISE_SUBSCRIPTION_PLAN_ID: Optional[str] = None
    PAYMENTS_CREDITS_10_PLAN_ID: Optional[str] = None
    PAYMENTS_CREDITS_50_PLAN_ID: Optional[str] = None
    PAYMENTS_CREDITS_100_PLAN_ID: Optional[str] = None

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()

PAYMENT_PLAN_SETTING_KEYS = (
    "PAYMENTS_BASIC_SUBSCRIPTION_PLAN_ID",
    "PAYMENTS_PROFESSIONAL_SUBSCRIPTION_PLAN_ID",
    "PAYMENTS_ENTERPRISE_SUBSCRIPTION_PLAN_ID",
    "PAYMENTS_CREDITS_10_PLAN_ID",
    "PAYMENTS_CREDITS_50_PLAN_ID",
    "PAYMENTS_CREDITS_100_PLAN_ID",
)


def load_settings() -> Settings:
    """Build a fresh Settings snapshot from the current environment."""
    return Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("maxjoboffers")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = ["DATABASE_URL", *PAYMENT_PLAN_SETTING_KEYS]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
