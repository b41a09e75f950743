from datetime import date, datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def parse_timestamp(value) -> Optional[datetime]:
    """
    Parse the date strings found in token files into aware UTC datetimes.

    Accepts "2099-12-31", "2025-01-05T10:00:00Z", "2025-01-05T10:00:00.123+00:00"
    or a datetime. A bare date means midnight UTC and naive values are taken as UTC.
    Raises ValueError for anything else.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenRecord(BaseModel):
    """One access token, as persisted in either token store."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    code: str
    email: Optional[str] = None
    description: str = ""
    access_level: Optional[str] = None
    expires_at: Optional[str] = None  # absent = never expires
    max_uses: Optional[int] = 0  # 0 / absent = unlimited
    used_count: Optional[int] = 0
    is_active: bool = False
    created_by: Optional[str] = None
    features: List[str] = Field(default_factory=list)
    stripe_session_id: Optional[str] = None
    purchase_date: Optional[str] = None
    plan: Optional[str] = None

    def expires_at_dt(self) -> Optional[datetime]:
        return parse_timestamp(self.expires_at)

    def purchase_date_dt(self) -> Optional[datetime]:
        return parse_timestamp(self.purchase_date)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        expires = self.expires_at_dt()
        if expires is None:
            return False
        return expires < (now or utcnow())

    def usage_exceeded(self) -> bool:
        max_uses = self.max_uses or 0
        return max_uses > 0 and (self.used_count or 0) >= max_uses

    def remaining_uses(self) -> Optional[int]:
        if not self.max_uses:
            return None
        return self.max_uses - (self.used_count or 0)

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
