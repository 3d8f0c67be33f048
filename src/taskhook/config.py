"""Configuration management for Taskhook."""

import logging
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Taskhook configuration loaded from environment variables.

    All settings can be overridden via environment variables with
    the TASKHOOK_ prefix. For example:
        TASKHOOK_DELIVERY_MAX_ATTEMPTS=5
        TASKHOOK_LEDGER_BACKEND=null

    Per-owner endpoint, secret and subscribed events are not settings:
    they live on each WebhookSubscription.
    """

    # Environment
    env: Literal["development", "production", "test"] = Field(
        default="development",
        description="Environment: development, production, or test",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log format: json for production, text for development",
    )

    # Outbound delivery
    delivery_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per delivery before it is marked failed",
    )
    delivery_initial_backoff_ms: int = Field(
        default=1000,
        ge=0,
        le=60_000,
        description="Delay before the second attempt; doubles after each retryable failure",
    )
    delivery_timeout_ms: int = Field(
        default=10_000,
        ge=100,
        le=120_000,
        description="Hard upper bound for a single HTTP attempt",
    )
    max_concurrent_deliveries: int = Field(
        default=10,
        ge=1,
        le=200,
        description="Maximum deliveries in flight for one fan-out",
    )
    user_agent: str = Field(
        default="Taskhook-Webhooks/1.0",
        description="User-Agent header sent with outbound webhooks",
    )

    # Platform recipient
    platform_webhook_url: str | None = Field(
        default=None,
        description=(
            "Endpoint that receives an event when a notified owner has no usable "
            "subscription (missing, disabled or circuit open)"
        ),
    )
    platform_webhook_secret: str | None = Field(
        default=None,
        description="Shared secret for the platform endpoint",
    )

    # Signatures
    signature_max_age_ms: int = Field(
        default=300_000,
        ge=1_000,
        le=3_600_000,
        description="Freshness window for signed timestamps (replay protection)",
    )
    callback_fallback_secret: str | None = Field(
        default=None,
        description=(
            "Platform-wide secret tried when an owner's secret does not verify "
            "an inbound callback (for environment-configured workers)"
        ),
    )

    # Ledger
    ledger_backend: Literal["memory", "null"] = Field(
        default="memory",
        description="Delivery ledger backend: in-memory, or null when persistence is unavailable",
    )
    stats_window_hours: int = Field(
        default=24,
        ge=1,
        le=24 * 90,
        description="Default look-back window for delivery statistics",
    )
    recent_deliveries_limit: int = Field(
        default=20,
        ge=1,
        le=500,
        description="Default number of records returned for recent deliveries",
    )

    model_config = {
        "env_prefix": "TASKHOOK_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    @model_validator(mode="after")
    def _warn_on_null_ledger_in_production(self) -> "Settings":
        """Warn when production runs without a delivery audit trail."""
        if self.env == "production" and self.ledger_backend == "null":
            logger.warning(
                "TASKHOOK_LEDGER_BACKEND=null in production: delivery history will not be kept"
            )
        return self


settings = Settings()
