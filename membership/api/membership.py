import logging
from typing import Literal

import stripe
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from membership.config import Settings, get_settings
from membership.dependencies import get_auto_store, get_gateway, get_manual_store
from membership.services.payments import PaymentConfigError, StripeGateway
from membership.services.token_store import TokenStore
from membership.services.validator import (
    find_paid_session_for_email,
    validate_manual_code,
    validate_membership,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["membership"])


class ValidateMembershipRequest(BaseModel):
    token: str | None = None
    email: str | None = None


class ValidateTokenRequest(BaseModel):
    code: str | None = None
    action: Literal["validate", "use"] = "validate"


class ValidateEmailRequest(BaseModel):
    email: str | None = None


@router.post("/validate-membership")
def validate_membership_access(
    data: ValidateMembershipRequest | None = None,
    manual: TokenStore = Depends(get_manual_store),
    auto: TokenStore = Depends(get_auto_store),
):
    """
    Check a code and/or an email against both token stores.
    Always answers 200; a failed lookup is reported as valid=false.
    """
    data = data or ValidateMembershipRequest()
    return validate_membership(manual, auto, token=data.token, email=data.email)


@router.post("/validate-token")
def validate_token(
    data: ValidateTokenRequest | None = None,
    manual: TokenStore = Depends(get_manual_store),
):
    data = data or ValidateTokenRequest()

    if not data.code:
        return JSONResponse(
            status_code=400,
            content={"isValid": False, "message": "Code is required"},
        )

    try:
        return validate_manual_code(manual, data.code, action=data.action)
    except Exception as e:
        logger.exception("❌ Error validating token: %s", e)
        return JSONResponse(
            status_code=500,
            content={"isValid": False, "valid": False, "message": "Internal server error"},
        )


@router.post("/validate-stripe-email")
def validate_stripe_email(
    data: ValidateEmailRequest | None = None,
    gateway: StripeGateway = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
):
    """Look for a paid checkout session for this email directly in Stripe."""
    data = data or ValidateEmailRequest()
    if not data.email:
        raise HTTPException(status_code=400, detail="Email is required")

    try:
        return find_paid_session_for_email(gateway, data.email, max_pages=settings.email_search_max_pages)
    except (PaymentConfigError, stripe.StripeError) as e:
        logger.error("❌ Error validating Stripe email: %s", e)
        raise HTTPException(status_code=500, detail="Internal server error")
