"""
Membership validation.

A visitor proves access with a code (manually issued, or the recovery code
printed after a purchase) or with the email used at checkout. Lookups never
raise: anything unexpected becomes a "no access" verdict.
"""

import logging
import re
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from membership.schemas import TokenRecord, utcnow
from membership.services.payments import StripeGateway
from membership.services.token_store import TokenStore

logger = logging.getLogger(__name__)

SOURCE_MANUAL = "manual"
SOURCE_RECOVERY = "stripe-recovery"
SOURCE_STRIPE = "stripe"
SOURCE_NONE = "none"
SOURCE_ERROR = "error"

FREE_TIER = "free"
DEFAULT_TIER = "unlimited"

_RECOVERY_CODE_RE = re.compile(r"^[A-Z0-9-]+$", re.IGNORECASE)


def looks_like_recovery_code(value: Optional[str]) -> bool:
    return bool(value) and "-" in value and bool(_RECOVERY_CODE_RE.match(value))


def _invalid(source: str, reason: Optional[str] = None) -> Dict[str, Any]:
    verdict = {"valid": False, "tier": FREE_TIER, "source": source}
    if reason:
        verdict["reason"] = reason
    return verdict


def _token_data(record: TokenRecord, source: str) -> Dict[str, Any]:
    if source == SOURCE_STRIPE:
        return {
            "email": record.email,
            "plan": record.plan,
            "purchaseDate": record.purchase_date,
            "accessLevel": record.access_level,
            "features": list(record.features),
        }

    data = {
        "code": record.code,
        "description": record.description,
        "accessLevel": record.access_level,
        "features": list(record.features),
    }
    if source == SOURCE_RECOVERY:
        data["email"] = record.email
    return data


def evaluate_record(record: TokenRecord, source: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Apply the active / expiry / usage checks to one record."""
    if not record.is_active:
        return _invalid(source, "inactive")
    if record.is_expired(now):
        return _invalid(source, "expired")
    if record.usage_exceeded():
        return _invalid(source, "usage_exceeded")

    return {
        "valid": True,
        "tier": record.access_level or DEFAULT_TIER,
        "source": source,
        "tokenData": _token_data(record, source),
    }


def _lookup_code(manual: TokenStore, auto: TokenStore, code: str, now: datetime) -> Optional[Dict[str, Any]]:
    normalized = code.strip().upper()
    if not normalized:
        return None

    record = manual.get(normalized)
    if record is not None:
        verdict = evaluate_record(record, SOURCE_MANUAL, now)
        if verdict["valid"]:
            return verdict
        fallback = verdict
    else:
        fallback = None

    # Recovery codes handed out after a purchase live in the automatic store
    record = auto.get(normalized)
    if record is not None:
        verdict = evaluate_record(record, SOURCE_RECOVERY, now)
        if verdict["valid"] or fallback is None:
            return verdict
    return fallback


def _lookup_email(auto: TokenStore, email: str, now: datetime) -> Optional[Dict[str, Any]]:
    fallback = None
    for record in auto.list_by_email(email):
        if not record.is_active or record.is_expired(now):
            continue
        verdict = evaluate_record(record, SOURCE_STRIPE, now)
        if verdict["valid"]:
            return verdict
        fallback = fallback or verdict
    return fallback


def validate_membership(
    manual: TokenStore,
    auto: TokenStore,
    token: Optional[str] = None,
    email: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Decide whether a visitor has access.

    Checked in order, first valid result wins:
      1. an "email" that is really a recovery code (e.g. STRIPE-AB12CD)
      2. the token, in the manual store then the automatic store
      3. the email, against purchased tokens in the automatic store

    When nothing is valid but a token was found, its verdict (with reason)
    is returned; otherwise source is "none".
    """
    now = now or utcnow()
    candidates = []

    try:
        if email and looks_like_recovery_code(email):
            logger.debug("Email looks like a recovery code, treating it as a token")
            candidates.append(_lookup_code(manual, auto, email, now))
            if candidates[-1] and candidates[-1]["valid"]:
                return candidates[-1]

        if token:
            candidates.append(_lookup_code(manual, auto, token, now))
            if candidates[-1] and candidates[-1]["valid"]:
                return candidates[-1]

        if email and "@" in email:
            candidates.append(_lookup_email(auto, email, now))
            if candidates[-1] and candidates[-1]["valid"]:
                return candidates[-1]

    except Exception:
        logger.exception("❌ Membership validation failed")
        return _invalid(SOURCE_ERROR)

    for verdict in candidates:
        if verdict is not None:
            return verdict
    return _invalid(SOURCE_NONE)


def validate_manual_code(
    store: TokenStore,
    code: str,
    action: str = "validate",
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Check a manually issued code and, for action="use", record one use.

    Returns the response body of the manual validate endpoint.
    """
    normalized = code.strip().upper()
    record = store.get(normalized)

    if record is None:
        logger.info("Code %s not found in manual store", normalized)
        return {"isValid": False, "valid": False, "message": "Invalid code"}

    if not record.is_active:
        return {"isValid": False, "valid": False, "message": "Code is no longer active"}

    if record.is_expired(now):
        return {"isValid": False, "valid": False, "message": "Code has expired"}

    if record.usage_exceeded():
        return {"isValid": False, "valid": False, "message": "Token usage limit exceeded"}

    if action == "use":
        redeemed = store.redeem(normalized)
        if redeemed is None:
            # Another request took the last use between the read and the update
            return {"isValid": False, "valid": False, "message": "Token usage limit exceeded"}
        record = redeemed
        logger.info("Code %s used (%s/%s)", record.code, record.used_count, record.max_uses or "∞")

    remaining = record.remaining_uses()
    body = {
        "isValid": True,
        "valid": True,
        "accessLevel": record.access_level or "basic",
        "token": {
            "code": record.code,
            "description": record.description,
            "accessLevel": record.access_level,
            "remainingUses": remaining,
        },
        "message": "Code is valid",
    }
    if remaining is not None:
        body["remainingUses"] = remaining
    return body


def find_paid_session_for_email(gateway: StripeGateway, email: str, max_pages: int = 10) -> Dict[str, Any]:
    """
    Look for a paid checkout session for this email directly in Stripe.

    Pages through at most max_pages pages of 100 sessions. Stripe errors propagate.
    """
    starting_after = None

    for attempt in range(max_pages):
        sessions, has_more = gateway.list_sessions(email, starting_after=starting_after, limit=100)
        logger.debug("Stripe search page %d for %s: %d sessions", attempt + 1, email, len(sessions))

        paid = [s for s in sessions if s.get("payment_status") == "paid"]
        if paid:
            # Stripe lists newest first
            latest = paid[0]
            plan = (latest.get("metadata") or {}).get("plan") or DEFAULT_TIER
            logger.info("✅ Found paid session for %s with plan %s", email, plan)
            return {
                "valid": True,
                "tier": plan,
                "email": email,
                "sessionCount": len(paid),
                "sessionId": latest.get("id"),
            }

        if not has_more or not sessions:
            break
        starting_after = sessions[-1].get("id")

    logger.info("No paid sessions found for %s", email)
    return {"valid": False, "message": "No completed purchases found for this email"}


def find_recent_purchase(
    store: TokenStore,
    plan: Optional[str],
    window_seconds: int = 120,
    now: Optional[datetime] = None,
) -> Optional[TokenRecord]:
    """Most recent active token for a plan purchased within the last window_seconds."""
    now = now or utcnow()
    since = now - timedelta(seconds=window_seconds)

    recent = []
    for record in store.all():
        if record.plan != plan or not record.is_active:
            continue
        try:
            purchased = record.purchase_date_dt()
            expired = record.is_expired(now)
        except ValueError:
            logger.warning("Skipping token %s with unparseable dates", record.code)
            continue
        if purchased is None or purchased <= since or expired:
            continue
        recent.append((purchased, record))

    if not recent:
        logger.info("No recent tokens found for plan %s", plan)
        return None

    recent.sort(key=lambda item: item[0], reverse=True)
    return recent[0][1]
