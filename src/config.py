"""Configuration for subscription-webhooks."""

import json

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./subscriptions.db"
    api_prefix: str = "/api/v1"
    debug: bool = False

    # Inbound webhooks
    webhook_providers: list[str] = ["lemonsqueezy"]
    webhook_max_retries: int = 5

    # Scheduler
    scheduler_enabled: bool = True
    scheduler_tick_seconds: float = 60.0
    retry_sweep_interval_seconds: float = 300.0
    retry_sweep_batch_size: int = 10
    subscription_sync_hour_utc: int = 2
    retry_queue_daily_hour_utc: int = 1

    # Subscriptions without a renewal date get this many days
    default_period_days: int = 30

    # Operator endpoints (Authorization: AdminSecret <key>)
    admin_secret_key: str = ""

    # Resend, used for the payment-failed e-mail
    resend_api_key: str = ""
    email_from: str = "Subscriptions <noreply@example.com>"
    app_url: str = "http://localhost:3000"

    model_config = {"env_prefix": "SUBS_"}

    @field_validator("webhook_providers", mode="before")
    @classmethod
    def _parse_webhook_providers(cls, value: object) -> object:
        if value in (None, ""):
            return []
        if isinstance(value, list):
            return value
        if isinstance(value, str):
            return json.loads(value)
        raise TypeError("webhook_providers must be a list or JSON array string")


settings = Settings()
