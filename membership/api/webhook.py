import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from membership.config import Settings, get_settings
from membership.dependencies import get_issuer
from membership.services.issuer import TokenIssuer
from membership.services.payments import (
    PaymentConfigError,
    StripeGateway,
    WebhookVerificationError,
    session_email,
    session_plan,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["webhook"])


def handle_checkout_completed(session: dict, issuer: TokenIssuer) -> None:
    email = session_email(session)
    plan = session_plan(session)

    logger.info(
        "💰 Processing checkout completed: session=%s payment_status=%s plan=%s",
        session.get("id"),
        session.get("payment_status"),
        plan,
    )

    if not email or not plan:
        # Nothing to issue. The buyer can still recover access via check-session.
        logger.error("❌ Missing email or plan on session %s (metadata=%s)", session.get("id"), session.get("metadata"))
        return

    issuer.issue(email, plan, session.get("id"))


@router.post("/stripe-webhook")
async def stripe_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    issuer: TokenIssuer = Depends(get_issuer),
):
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    logger.info("🚀 Webhook received (%d bytes, signature=%s)", len(payload), bool(sig_header))

    try:
        event = StripeGateway.verify_webhook(payload, sig_header, settings.stripe_webhook_secret)
    except PaymentConfigError:
        logger.error("❌ STRIPE_WEBHOOK_SECRET not configured")
        raise HTTPException(status_code=500, detail="Webhook not configured")
    except WebhookVerificationError as e:
        logger.warning("❌ Webhook signature verification failed: %s", e)
        raise HTTPException(status_code=400, detail="Invalid signature")

    etype = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}
    logger.info("📨 Received Stripe event %s", etype)

    try:
        if etype == "checkout.session.completed":
            handle_checkout_completed(obj, issuer)
        elif etype == "payment_intent.succeeded":
            logger.info("Payment intent %s succeeded", obj.get("id"))
        else:
            logger.info("Unhandled event type: %s", etype)
    except Exception as e:
        logger.exception("❌ Error processing webhook: %s", e)
        return JSONResponse(status_code=500, content={"error": "Webhook processing failed"})

    return {"received": True}
