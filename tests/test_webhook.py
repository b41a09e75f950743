import hashlib
import hmac
import json
import time

from conftest import WEBHOOK_SECRET

from membership.config import Settings, get_settings
from membership.main import app


def sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    timestamp = timestamp or int(time.time())
    signature = hmac.new(secret.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def completed_event(email="buyer@example.com", plan="premium", session_id="cs_hook_1"):
    return json.dumps(
        {
            "id": "evt_1",
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": session_id,
                    "payment_status": "paid",
                    "customer_details": {"email": email} if email else None,
                    "metadata": {"plan": plan} if plan else {},
                }
            },
        }
    )


def post_event(client, payload, signature):
    headers = {"Content-Type": "application/json"}
    if signature is not None:
        headers["Stripe-Signature"] = signature
    return client.post("/api/stripe-webhook", content=payload, headers=headers)


def test_completed_checkout_issues_token(client, auto_store):
    payload = completed_event()

    resp = post_event(client, payload, sign(payload))

    assert resp.status_code == 200
    assert resp.json() == {"received": True}
    [record] = auto_store.all()
    assert record.email == "buyer@example.com"
    assert record.plan == "premium"
    assert record.access_level == "premium"
    assert record.stripe_session_id == "cs_hook_1"
    assert record.created_by == "Stripe-Auto"


def test_bad_signature_is_rejected_without_side_effects(client, auto_store, seed):
    seed(auto_store, {"STRIPE-KEEP01": {"code": "STRIPE-KEEP01", "isActive": True, "plan": "premium"}})
    before = auto_store.path.read_bytes()
    payload = completed_event()

    resp = post_event(client, payload, sign(payload, secret="whsec_someone_else"))

    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid signature"}
    assert auto_store.path.read_bytes() == before


def test_tampered_payload_is_rejected(client, auto_store):
    signature = sign(completed_event(plan="unlimited"))
    resp = post_event(client, completed_event(plan="premium"), signature)
    assert resp.status_code == 400
    assert auto_store.all() == []


def test_stale_signature_is_rejected(client, auto_store):
    payload = completed_event()
    resp = post_event(client, payload, sign(payload, timestamp=int(time.time()) - 3600))
    assert resp.status_code == 400
    assert auto_store.all() == []


def test_missing_signature_header(client, auto_store):
    resp = post_event(client, completed_event(), None)
    assert resp.status_code == 400
    assert auto_store.all() == []


def test_unconfigured_webhook_secret(client, auto_store):
    app.dependency_overrides[get_settings] = lambda: Settings(stripe_secret_key="sk_test_123")
    payload = completed_event()

    resp = post_event(client, payload, sign(payload))

    assert resp.status_code == 500
    assert resp.json() == {"error": "Webhook not configured"}
    assert auto_store.all() == []


def test_completed_checkout_without_plan_is_acknowledged(client, auto_store):
    payload = completed_event(plan=None)

    resp = post_event(client, payload, sign(payload))

    assert resp.status_code == 200
    assert resp.json() == {"received": True}
    assert auto_store.all() == []


def test_other_events_are_acknowledged(client, auto_store):
    for event_type in ("payment_intent.succeeded", "customer.created"):
        payload = json.dumps({"id": "evt_2", "type": event_type, "data": {"object": {"id": "obj_1"}}})
        resp = post_event(client, payload, sign(payload))
        assert resp.status_code == 200
        assert resp.json() == {"received": True}
    assert auto_store.all() == []


def test_same_event_twice_issues_two_tokens(client, auto_store):
    payload = completed_event()
    post_event(client, payload, sign(payload))
    post_event(client, payload, sign(payload))
    assert len(auto_store.all()) == 2
