import logging
import secrets
import string
from datetime import datetime
from typing import Callable, Optional

from membership.schemas import TokenRecord, utcnow
from membership.services.token_store import TokenStore

logger = logging.getLogger(__name__)

PREMIUM_PLANS = ("premium", "premium-upgrade")

RECOVERY_CODE_PREFIX = "STRIPE"
RECOVERY_CODE_ALPHABET = string.ascii_uppercase + string.digits
RECOVERY_CODE_LENGTH = 6

# Purchased tokens are effectively permanent
PURCHASED_TOKEN_EXPIRY = "2099-12-31"
PURCHASED_TOKEN_MAX_USES = 1


def access_level_for_plan(plan: Optional[str]) -> str:
    return "premium" if plan in PREMIUM_PLANS else "unlimited"


def generate_recovery_code() -> str:
    suffix = "".join(secrets.choice(RECOVERY_CODE_ALPHABET) for _ in range(RECOVERY_CODE_LENGTH))
    return f"{RECOVERY_CODE_PREFIX}-{suffix}"


class TokenIssuer:
    """
    Creates the automatic-store token for a confirmed paid checkout session.

    The webhook, check-session and auto-activate endpoints all issue through
    this class. Issuance is not idempotent: calling it twice for the same
    session stores two tokens.
    """

    def __init__(
        self,
        store: TokenStore,
        code_factory: Callable[[], str] = generate_recovery_code,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.code_factory = code_factory
        self.clock = clock

    def _unused_code(self) -> str:
        code = self.code_factory()
        while self.store.get(code) is not None:
            code = self.code_factory()
        return code

    def issue(self, email: str, plan: str, session_id: str) -> TokenRecord:
        if not email or not plan or not session_id:
            raise ValueError("email, plan and session_id are required to issue a token")

        record = TokenRecord(
            code=self._unused_code(),
            email=email,
            description=f"Stripe purchase - {plan} plan",
            access_level=access_level_for_plan(plan),
            expires_at=PURCHASED_TOKEN_EXPIRY,
            max_uses=PURCHASED_TOKEN_MAX_USES,
            used_count=0,
            is_active=True,
            created_by="Stripe-Auto",
            features=[],
            stripe_session_id=session_id,
            purchase_date=self.clock().isoformat(),
            plan=plan,
        )
        self.store.put(record)

        logger.info("🎯 Issued token %s for %s (plan=%s, session=%s)", record.code, email, plan, session_id)
        return record
