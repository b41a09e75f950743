from sqlalchemy import JSON, Boolean, Column, Integer, String, UniqueConstraint

from membership.database import Base


class MembershipToken(Base):
    __tablename__ = "membership_tokens"
    __table_args__ = (UniqueConstraint("kind", "code", name="uq_membership_tokens_kind_code"),)

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(String, nullable=False, index=True)  # "manual" or "auto"
    code = Column(String, nullable=False, index=True)  # e.g. "STRIPE-7QK2ZD"
    email = Column(String, nullable=True, index=True)
    description = Column(String, default="")
    access_level = Column(String, nullable=True)  # "unlimited", "premium", ...
    # Stored as the ISO strings they arrive as ("2099-12-31" or a full timestamp)
    expires_at = Column(String, nullable=True)  # None = never expires
    max_uses = Column(Integer, default=0)  # 0 = unlimited
    used_count = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)
    created_by = Column(String, nullable=True)
    features = Column(JSON, default=list)
    stripe_session_id = Column(String, nullable=True, index=True)
    purchase_date = Column(String, nullable=True)
    plan = Column(String, nullable=True)
