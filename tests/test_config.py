import pytest

from membership.config import CHECKOUT_PLANS, Settings

ENV_VARS = (
    "ENV",
    "LOG_LEVEL",
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "STRIPE_UNLIMITED_PRICE_ID",
    "STRIPE_PREMIUM_PRICE_ID",
    "SITE_URL",
    "UPGRADE_AMOUNT_CENTS",
    "UPGRADE_CURRENCY",
    "TOKEN_STORE_BACKEND",
    "MANUAL_TOKENS_PATH",
    "AUTO_TOKENS_PATH",
    "DATABASE_URL",
    "RECENT_PURCHASE_WINDOW_SECONDS",
    "EMAIL_SEARCH_MAX_PAGES",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    settings = Settings.from_env()

    assert settings.env == "dev"
    assert settings.stripe_secret_key == ""
    assert settings.price_id_for("premium") == ""
    assert settings.site_url == "http://localhost:4321"
    assert settings.upgrade_amount_cents == 1000
    assert settings.token_store_backend == "json"
    assert settings.recent_purchase_window_seconds == 120


def test_reads_environment(clean_env):
    clean_env.setenv("STRIPE_SECRET_KEY", " sk_live_abc ")
    clean_env.setenv("STRIPE_PREMIUM_PRICE_ID", "price_p")
    clean_env.setenv("SITE_URL", "https://members.example.com/")
    clean_env.setenv("UPGRADE_AMOUNT_CENTS", "1500")
    clean_env.setenv("UPGRADE_CURRENCY", "EUR")
    clean_env.setenv("TOKEN_STORE_BACKEND", "SQL")
    clean_env.setenv("LOG_LEVEL", "debug")

    settings = Settings.from_env()

    assert settings.stripe_secret_key == "sk_live_abc"
    assert settings.price_id_for("premium") == "price_p"
    assert settings.price_id_for("unlimited") == ""
    assert settings.price_id_for("premium-upgrade") == ""
    assert settings.site_url == "https://members.example.com"
    assert settings.upgrade_amount_cents == 1500
    assert settings.upgrade_currency == "eur"
    assert settings.token_store_backend == "sql"
    assert settings.log_level == "DEBUG"


def test_bad_integer_is_rejected(clean_env):
    clean_env.setenv("RECENT_PURCHASE_WINDOW_SECONDS", "two minutes")
    with pytest.raises(ValueError, match="RECENT_PURCHASE_WINDOW_SECONDS"):
        Settings.from_env()


def test_checkout_plans():
    assert CHECKOUT_PLANS == ("unlimited", "premium", "premium-upgrade")
