from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # ─────────── APP ───────────
    app_name: str = "Payout Engine"
    environment: str = "dev"
    log_level: str = "INFO"

    # ─────────── API ───────────
    api_prefix: str = "/api/v1"
    request_id_header: str = "X-Request-Id"

    # ─────────── DATABASE ───────────
    database_url: str

    # ─────────── PAYMENT RAIL (Stripe Connect) ───────────
    # No key means the rail is unconfigured and payouts are disabled.
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_api_base: str = "https://api.stripe.com/v1"
    stripe_api_version: str = "2024-11-20.acacia"
    stripe_account_country: str = "US"
    payout_currency: str = "usd"
    rail_timeout_seconds: float = 30.0
    onboarding_link_ttl_hours: int = 24

    # ─────────── PAYOUTS ───────────
    ledger_claim_lease_seconds: int = 300
    payout_dispatch_workers: int = 8
    default_chef_payout_percentage: float = 70.0
    chef_payout_bonus_enabled: bool = True
    chef_payout_bonus_cap_pct: float = 10.0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
