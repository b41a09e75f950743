import logging
from typing import Any, Dict, List, Optional, Tuple

import stripe

logger = logging.getLogger(__name__)


class PaymentConfigError(RuntimeError):
    """Stripe is not configured (missing secret key or webhook secret)."""


class WebhookVerificationError(ValueError):
    """The webhook payload or its signature could not be trusted."""


def _plain(obj) -> Dict[str, Any]:
    if obj is None:
        return {}
    # StripeObject subclasses dict, so check for to_dict first
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return obj


class StripeGateway:
    """
    Thin wrapper over the Stripe SDK.

    Every call passes the secret key explicitly instead of mutating the global
    stripe.api_key, and every result is returned as a plain dict.
    """

    def __init__(self, secret_key: str):
        self.secret_key = (secret_key or "").strip()

    def _key(self) -> str:
        if not self.secret_key:
            logger.error("❌ STRIPE_SECRET_KEY is not set")
            raise PaymentConfigError("Stripe secret key not configured")
        return self.secret_key

    def create_checkout_session(self, **params) -> Dict[str, Any]:
        session = stripe.checkout.Session.create(api_key=self._key(), **params)
        return _plain(session)

    def retrieve_session(self, session_id: str) -> Dict[str, Any]:
        session = stripe.checkout.Session.retrieve(session_id, api_key=self._key())
        return _plain(session)

    def list_sessions(
        self,
        email: str,
        starting_after: Optional[str] = None,
        limit: int = 100,
    ) -> Tuple[List[Dict[str, Any]], bool]:
        """One page of checkout sessions for a customer email, newest first."""
        params = {"customer_details": {"email": email}, "limit": limit}
        if starting_after:
            params["starting_after"] = starting_after

        page = _plain(stripe.checkout.Session.list(api_key=self._key(), **params))
        sessions = [_plain(s) for s in page.get("data") or []]
        return sessions, bool(page.get("has_more"))

    @staticmethod
    def verify_webhook(payload: bytes, sig_header: Optional[str], secret: str) -> Dict[str, Any]:
        if not secret:
            raise PaymentConfigError("Stripe webhook secret not configured")
        if not sig_header:
            raise WebhookVerificationError("Missing Stripe signature header")

        try:
            event = stripe.Webhook.construct_event(payload, sig_header, secret)
        except stripe.SignatureVerificationError as e:
            raise WebhookVerificationError(str(e)) from e
        except ValueError as e:
            # Undecodable bytes or a body that is not JSON
            raise WebhookVerificationError("Invalid webhook payload") from e

        return _plain(event)


def session_email(session: Dict[str, Any]) -> Optional[str]:
    return ((session.get("customer_details") or {}).get("email")) or None


def session_plan(session: Dict[str, Any]) -> Optional[str]:
    return ((session.get("metadata") or {}).get("plan")) or None
