# backend/classpay/core/config.py
import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug(f"[CONFIG] Looking for .env at: {env_path} (exists={env_path.exists()})")
    load_dotenv(env_path)


_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class Settings(BaseSettings):
    """
    Process-level settings for ClassPay.

    Business settings that admins edit at runtime (commission, withdrawal
    rules) are not here; they live in the platform_config table and are read
    through ConfigService.
    """

    log_level: str = Field(default="INFO", description="Root log level")

    database_url: str = Field(
        default="sqlite:///./classpay.db",
        description="SQLAlchemy database URL",
    )

    # Stripe
    stripe_secret_key: Optional[SecretStr] = Field(
        default=None, description="Stripe secret key (sk_...)"
    )
    stripe_webhook_secret: Optional[SecretStr] = Field(
        default=None, description="Signing secret for Stripe webhooks (whsec_...)"
    )
    stripe_timeout_seconds: int = Field(
        default=8, ge=1, le=60, description="HTTP timeout for every Stripe call"
    )
    stripe_max_network_retries: int = Field(
        default=1, ge=0, le=5, description="Automatic retries for transient Stripe failures"
    )
    platform_payout_account_id: Optional[str] = Field(
        default=None,
        description="Bank account or card id that receives platform (admin) withdrawals",
    )

    # Celery
    redis_url: str = Field(default="redis://localhost:6379", description="Redis URL")
    celery_broker_url: Optional[str] = Field(default=None, description="Overrides redis_url")
    withdrawal_auto_approve_sweep_minutes: int = Field(
        default=60, ge=1, description="Interval between auto-approve sweeps"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> str:
        level = str(value or "INFO").strip().upper()
        if level not in _VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_VALID_LOG_LEVELS)}")
        return level

    def get_celery_broker_url(self) -> str:
        """Return the broker URL with an explicit Redis database number."""
        broker_url = self.celery_broker_url or self.redis_url
        if broker_url.startswith("redis") and not any(
            broker_url.endswith(f"/{i}") for i in range(16)
        ):
            broker_url = f"{broker_url}/0"
        return broker_url


settings = Settings()
