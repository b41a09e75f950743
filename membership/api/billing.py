import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from membership.config import CHECKOUT_PLANS, UPGRADE_PLAN, Settings, get_settings
from membership.dependencies import get_auto_store, get_gateway, get_issuer
from membership.services.issuer import TokenIssuer
from membership.services.payments import PaymentConfigError, StripeGateway, session_email, session_plan
from membership.services.token_store import TokenStore
from membership.services.validator import find_recent_purchase

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["billing"])


class CheckoutRequest(BaseModel):
    plan: str | None = None
    action: str | None = None
    session_id: str | None = Field(default=None, alias="sessionId")


class SessionRequest(BaseModel):
    session_id: str | None = Field(default=None, alias="sessionId")


class RecentPurchaseRequest(BaseModel):
    plan: str | None = None


def build_checkout_params(settings: Settings, plan: str) -> dict:
    """Stripe Checkout parameters for a plan already known to be valid."""
    success_url = f"{settings.site_url}/membership?success=true&plan={plan}&session_id={{CHECKOUT_SESSION_ID}}"
    cancel_url = f"{settings.site_url}/membership?canceled=true"

    if plan == UPGRADE_PLAN:
        line_item = {
            "price_data": {
                "currency": settings.upgrade_currency,
                "product_data": {
                    "name": "Premium Upgrade",
                    "description": "Upgrade from Unlimited to Premium",
                },
                "unit_amount": settings.upgrade_amount_cents,
            },
            "quantity": 1,
        }
    else:
        price_id = settings.price_id_for(plan)
        if not price_id:
            logger.error("❌ No Stripe price id configured for plan %s", plan)
            raise HTTPException(status_code=500, detail="Stripe configuration error")
        line_item = {"price": price_id, "quantity": 1}

    return {
        "mode": "payment",
        "payment_method_types": ["card"],
        "line_items": [line_item],
        "success_url": success_url,
        "cancel_url": cancel_url,
        "metadata": {"plan": plan},
        "customer_creation": "if_required",
    }


@router.post("/create-stripe-checkout")
def create_stripe_checkout(
    data: CheckoutRequest | None = None,
    gateway: StripeGateway = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
):
    """
    Start a Stripe Checkout for a plan and return its URL.

    With action="get-session-details" and a sessionId, returns the buyer
    details of an existing session instead.
    """
    data = data or CheckoutRequest()

    if data.action == "get-session-details" and data.session_id:
        try:
            session = gateway.retrieve_session(data.session_id)
        except PaymentConfigError:
            raise HTTPException(status_code=500, detail="Stripe configuration error")
        except stripe.StripeError as e:
            logger.error("❌ Error retrieving session %s: %s", data.session_id, e)
            raise HTTPException(status_code=500, detail="Failed to retrieve session")

        customer_details = session.get("customer_details")
        return {
            "email": (customer_details or {}).get("email") or "N/A",
            "status": session.get("status"),
            "payment_status": session.get("payment_status"),
            "customer_details": customer_details,
        }

    plan = data.plan
    if plan not in CHECKOUT_PLANS:
        raise HTTPException(status_code=400, detail="Invalid plan specified")

    params = build_checkout_params(settings, plan)

    try:
        session = gateway.create_checkout_session(**params)
    except PaymentConfigError:
        raise HTTPException(status_code=500, detail="Stripe configuration error")
    except stripe.StripeError as e:
        logger.error("❌ Stripe error creating checkout for plan %s: %s", plan, e)
        raise HTTPException(status_code=500, detail="Failed to create checkout session")

    logger.info("Checkout session %s created for plan %s", session.get("id"), plan)
    return {"url": session.get("url"), "sessionId": session.get("id")}


@router.post("/check-session")
def check_session(
    data: SessionRequest | None = None,
    gateway: StripeGateway = Depends(get_gateway),
    issuer: TokenIssuer = Depends(get_issuer),
):
    """
    Poll a checkout session and issue a token once it is paid.

    Runs independently of the webhook, so a purchase can end up with more
    than one token.
    """
    data = data or SessionRequest()
    if not data.session_id:
        raise HTTPException(status_code=400, detail="Session ID required")

    try:
        session = gateway.retrieve_session(data.session_id)
        paid = session.get("payment_status") == "paid"
        email, plan = session_email(session), session_plan(session)

        if paid and email and plan:
            record = issuer.issue(email, plan, data.session_id)
            return {"success": True, "paid": True, "token": record.to_json()}

        return {"success": False, "paid": paid, "status": session.get("payment_status")}

    except Exception as e:
        logger.exception("❌ Error checking session %s: %s", data.session_id, e)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Failed to check session"},
        )


@router.post("/auto-activate")
def auto_activate(
    data: SessionRequest | None = None,
    gateway: StripeGateway = Depends(get_gateway),
    issuer: TokenIssuer = Depends(get_issuer),
):
    """Same as check-session, but also echoes the buyer email and plan."""
    data = data or SessionRequest()
    if not data.session_id:
        raise HTTPException(status_code=400, detail="Session ID required")

    logger.info("🔍 Auto-creating token for session %s", data.session_id)

    try:
        session = gateway.retrieve_session(data.session_id)

        if session.get("payment_status") != "paid":
            return {"success": True, "paid": False, "paymentStatus": session.get("payment_status")}

        email, plan = session_email(session), session_plan(session)
        if not email or not plan:
            return JSONResponse(
                status_code=400,
                content={"success": False, "error": "Missing customer email or plan data"},
            )

        record = issuer.issue(email, plan, data.session_id)
        return {
            "success": True,
            "paid": True,
            "token": record.to_json(),
            "email": email,
            "plan": plan,
        }

    except Exception as e:
        logger.exception("❌ Error auto-activating session %s: %s", data.session_id, e)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Failed to activate session"},
        )


@router.post("/get-recent-purchase")
def get_recent_purchase(
    data: RecentPurchaseRequest | None = None,
    store: TokenStore = Depends(get_auto_store),
    settings: Settings = Depends(get_settings),
):
    """Token bought for this plan in the last couple of minutes, if any."""
    data = data or RecentPurchaseRequest()

    try:
        record = find_recent_purchase(store, data.plan, window_seconds=settings.recent_purchase_window_seconds)
    except Exception as e:
        logger.exception("❌ Error finding recent purchase: %s", e)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Failed to check recent purchase"},
        )

    if record is None:
        return {"success": False, "message": "No recent purchase found"}

    logger.info("Found recent token for plan %s: %s", data.plan, record.code)
    return {"success": True, "token": record.to_json()}
