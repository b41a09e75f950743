import os
from dataclasses import dataclass, field
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()

# Plans sold through checkout. "premium-upgrade" has no price id, it is billed
# as an ad-hoc line item (see Settings.upgrade_amount_cents).
PRICED_PLANS = ("unlimited", "premium")
UPGRADE_PLAN = "premium-upgrade"
CHECKOUT_PLANS = PRICED_PLANS + (UPGRADE_PLAN,)


def _int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    env: str = "dev"
    log_level: str = "INFO"

    # Stripe
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    price_ids: dict = field(default_factory=dict)
    site_url: str = "http://localhost:4321"
    upgrade_amount_cents: int = 1000
    upgrade_currency: str = "usd"

    # Token storage
    token_store_backend: str = "json"  # "json" or "sql"
    manual_tokens_path: str = "data/membership-tokens.json"
    auto_tokens_path: str = "data/stripe-tokens.json"
    database_url: str = "sqlite:///./membership.db"

    recent_purchase_window_seconds: int = 120
    email_search_max_pages: int = 10

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            env=(os.getenv("ENV") or "dev").strip(),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").strip().upper(),
            stripe_secret_key=(os.getenv("STRIPE_SECRET_KEY") or "").strip(),
            stripe_webhook_secret=(os.getenv("STRIPE_WEBHOOK_SECRET") or "").strip(),
            price_ids={
                "unlimited": (os.getenv("STRIPE_UNLIMITED_PRICE_ID") or "").strip(),
                "premium": (os.getenv("STRIPE_PREMIUM_PRICE_ID") or "").strip(),
            },
            site_url=(os.getenv("SITE_URL") or "http://localhost:4321").strip().rstrip("/"),
            upgrade_amount_cents=_int_env("UPGRADE_AMOUNT_CENTS", 1000),
            upgrade_currency=(os.getenv("UPGRADE_CURRENCY") or "usd").strip().lower(),
            token_store_backend=(os.getenv("TOKEN_STORE_BACKEND") or "json").strip().lower(),
            manual_tokens_path=os.getenv("MANUAL_TOKENS_PATH") or "data/membership-tokens.json",
            auto_tokens_path=os.getenv("AUTO_TOKENS_PATH") or "data/stripe-tokens.json",
            database_url=os.getenv("DATABASE_URL") or "sqlite:///./membership.db",
            recent_purchase_window_seconds=_int_env("RECENT_PURCHASE_WINDOW_SECONDS", 120),
            email_search_max_pages=_int_env("EMAIL_SEARCH_MAX_PAGES", 10),
        )

    def price_id_for(self, plan: str) -> str:
        return (self.price_ids or {}).get(plan, "")


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
