import json

import pytest
import stripe
from fastapi.testclient import TestClient

from membership.config import Settings, get_settings
from membership.dependencies import get_auto_store, get_gateway, get_manual_store
from membership.main import app
from membership.services.token_store import JsonFileTokenStore

WEBHOOK_SECRET = "whsec_test_secret"


class FakeGateway:
    """Stands in for StripeGateway; records every call it receives."""

    def __init__(self):
        self.sessions = {}
        self.pages = []
        self.created = []
        self.calls = []
        self.fail_with = None

    def create_checkout_session(self, **params):
        self.calls.append(("create", params))
        if self.fail_with:
            raise self.fail_with
        self.created.append(params)
        return {"id": "cs_test_new", "url": "https://checkout.stripe.test/c/pay/cs_test_new"}

    def retrieve_session(self, session_id):
        self.calls.append(("retrieve", session_id))
        if self.fail_with:
            raise self.fail_with
        if session_id not in self.sessions:
            raise stripe.InvalidRequestError(f"No such checkout.session: '{session_id}'", "id")
        return self.sessions[session_id]

    def list_sessions(self, email, starting_after=None, limit=100):
        self.calls.append(("list", email, starting_after))
        if self.fail_with:
            raise self.fail_with
        page_index = len([c for c in self.calls if c[0] == "list"]) - 1
        if page_index >= len(self.pages):
            return [], False
        return self.pages[page_index]


def paid_session(session_id="cs_test_paid", email="buyer@example.com", plan="premium", status="paid"):
    return {
        "id": session_id,
        "status": "complete" if status == "paid" else "open",
        "payment_status": status,
        "customer_details": {"email": email, "name": "Test Buyer"} if email else None,
        "metadata": {"plan": plan} if plan else {},
    }


@pytest.fixture
def paid_session_factory():
    return paid_session


@pytest.fixture
def manual_store(tmp_path):
    return JsonFileTokenStore(tmp_path / "membership-tokens.json")


@pytest.fixture
def auto_store(tmp_path):
    return JsonFileTokenStore(tmp_path / "stripe-tokens.json")


@pytest.fixture
def seed():
    """Write raw token JSON into a store's file, as an administrator would."""

    def _seed(store, tokens):
        store.path.parent.mkdir(parents=True, exist_ok=True)
        store.path.write_text(json.dumps(tokens, indent=2), encoding="utf-8")
        return store

    return _seed


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret=WEBHOOK_SECRET,
        price_ids={"unlimited": "price_unlimited_123", "premium": "price_premium_123"},
        site_url="https://members.example.com",
        manual_tokens_path=str(tmp_path / "membership-tokens.json"),
        auto_tokens_path=str(tmp_path / "stripe-tokens.json"),
    )


@pytest.fixture
def client(settings, manual_store, auto_store, gateway):
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_manual_store] = lambda: manual_store
    app.dependency_overrides[get_auto_store] = lambda: auto_store
    app.dependency_overrides[get_gateway] = lambda: gateway
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
