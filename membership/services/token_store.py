"""
Token stores: code -> TokenRecord mappings.

Two stores exist side by side: the manual store (curated by an administrator
with manage_tokens.py) and the automatic store (written by the issuer after a
confirmed payment). Handlers only see the TokenStore interface so the JSON
file can be swapped for a database table.
"""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from membership.config import Settings
from membership.database import SessionLocal
from membership.models.token import MembershipToken
from membership.schemas import TokenRecord

logger = logging.getLogger(__name__)

MANUAL = "manual"
AUTO = "auto"


class TokenStore(ABC):
    @abstractmethod
    def get(self, code: str) -> Optional[TokenRecord]:
        """Exact-key lookup. Callers normalise the code."""

    @abstractmethod
    def put(self, record: TokenRecord) -> TokenRecord:
        """Insert or replace the record stored under record.code."""

    @abstractmethod
    def all(self) -> List[TokenRecord]:
        ...

    @abstractmethod
    def delete(self, code: str) -> bool:
        ...

    @abstractmethod
    def redeem(self, code: str) -> Optional[TokenRecord]:
        """
        Record one use of an active token.

        Increments usedCount only while the token is active and below its
        maxUses ceiling (or has none). Returns the updated record, or None
        when the token is missing or cannot be used any more.
        """

    def list_by_email(self, email: str) -> List[TokenRecord]:
        wanted = (email or "").strip().lower()
        if not wanted:
            return []
        return [r for r in self.all() if (r.email or "").strip().lower() == wanted]


class JsonFileTokenStore(TokenStore):
    """
    A single JSON object on disk, read and rewritten wholesale.

    Writers inside this process are serialised by a lock. Two processes
    writing the same file still race and the last writer wins.
    """

    _locks: Dict[str, threading.Lock] = {}
    _locks_guard = threading.Lock()

    def __init__(self, path):
        self.path = Path(path)
        key = os.path.abspath(self.path)
        with self._locks_guard:
            self._lock = self._locks.setdefault(key, threading.Lock())

    def _read_raw(self) -> dict:
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            logger.info("Token file %s not found, treating store as empty", self.path)
            return {}
        except (OSError, ValueError) as e:
            logger.warning("⚠️ Could not read token file %s: %s", self.path, e)
            return {}

        if not isinstance(data, dict):
            logger.warning("⚠️ Token file %s does not hold a JSON object, ignoring it", self.path)
            return {}
        return data

    def _write_raw(self, data: dict) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
        except OSError as e:
            logger.error("❌ Failed to write token file %s: %s", self.path, e)
            raise

    def get(self, code: str) -> Optional[TokenRecord]:
        raw = self._read_raw().get(code)
        if raw is None:
            return None
        return _record_from_raw(code, raw)

    def put(self, record: TokenRecord) -> TokenRecord:
        with self._lock:
            data = self._read_raw()
            data[record.code] = record.to_json()
            self._write_raw(data)
        return record

    def all(self) -> List[TokenRecord]:
        records = []
        for code, raw in self._read_raw().items():
            try:
                records.append(_record_from_raw(code, raw))
            except (ValidationError, TypeError) as e:
                logger.warning("Skipping malformed token %r in %s: %s", code, self.path, e)
        return records

    def delete(self, code: str) -> bool:
        with self._lock:
            data = self._read_raw()
            if code not in data:
                return False
            del data[code]
            self._write_raw(data)
        return True

    def redeem(self, code: str) -> Optional[TokenRecord]:
        with self._lock:
            data = self._read_raw()
            raw = data.get(code)
            if raw is None:
                return None
            record = _record_from_raw(code, raw)
            if not record.is_active or record.usage_exceeded():
                return None
            record.used_count = (record.used_count or 0) + 1
            data[code] = record.to_json()
            self._write_raw(data)
        return record


def _record_from_raw(code: str, raw) -> TokenRecord:
    if not isinstance(raw, dict):
        raise TypeError(f"token {code!r} is not an object")
    payload = dict(raw)
    payload.setdefault("code", code)
    return TokenRecord.model_validate(payload)


class SqlTokenStore(TokenStore):
    """Token store backed by the membership_tokens table, one partition per kind."""

    def __init__(self, session_factory: Callable[[], Session], kind: str):
        self.session_factory = session_factory
        self.kind = kind

    def _query(self, db: Session):
        return db.query(MembershipToken).filter(MembershipToken.kind == self.kind)

    def get(self, code: str) -> Optional[TokenRecord]:
        db = self.session_factory()
        try:
            row = self._query(db).filter(MembershipToken.code == code).first()
            return _record_from_row(row) if row else None
        finally:
            db.close()

    def put(self, record: TokenRecord) -> TokenRecord:
        db = self.session_factory()
        try:
            row = self._query(db).filter(MembershipToken.code == record.code).first()
            if not row:
                row = MembershipToken(kind=self.kind, code=record.code)
                db.add(row)
            row.email = record.email
            row.description = record.description
            row.access_level = record.access_level
            row.expires_at = record.expires_at
            row.max_uses = record.max_uses or 0
            row.used_count = record.used_count or 0
            row.is_active = record.is_active
            row.created_by = record.created_by
            row.features = list(record.features)
            row.stripe_session_id = record.stripe_session_id
            row.purchase_date = record.purchase_date
            row.plan = record.plan
            db.commit()
            return record
        except Exception:
            db.rollback()
            logger.exception("❌ Failed to save token %s", record.code)
            raise
        finally:
            db.close()

    def all(self) -> List[TokenRecord]:
        db = self.session_factory()
        try:
            return [_record_from_row(row) for row in self._query(db).order_by(MembershipToken.id).all()]
        finally:
            db.close()

    def list_by_email(self, email: str) -> List[TokenRecord]:
        wanted = (email or "").strip().lower()
        if not wanted:
            return []
        db = self.session_factory()
        try:
            rows = (
                self._query(db)
                .filter(MembershipToken.email.isnot(None))
                .order_by(MembershipToken.id)
                .all()
            )
            return [_record_from_row(row) for row in rows if row.email.strip().lower() == wanted]
        finally:
            db.close()

    def delete(self, code: str) -> bool:
        db = self.session_factory()
        try:
            row = self._query(db).filter(MembershipToken.code == code).first()
            if not row:
                return False
            db.delete(row)
            db.commit()
            return True
        finally:
            db.close()

    def redeem(self, code: str) -> Optional[TokenRecord]:
        db = self.session_factory()
        try:
            # Single conditional UPDATE: two concurrent redemptions of the last
            # remaining use cannot both succeed.
            stmt = (
                update(MembershipToken)
                .where(
                    MembershipToken.kind == self.kind,
                    MembershipToken.code == code,
                    MembershipToken.is_active.is_(True),
                    or_(
                        MembershipToken.max_uses.is_(None),
                        MembershipToken.max_uses <= 0,
                        MembershipToken.used_count < MembershipToken.max_uses,
                    ),
                )
                .values(used_count=MembershipToken.used_count + 1)
                .execution_options(synchronize_session=False)
            )
            result = db.execute(stmt)
            db.commit()
            if result.rowcount == 0:
                return None
            row = self._query(db).filter(MembershipToken.code == code).first()
            return _record_from_row(row) if row else None
        finally:
            db.close()


def _record_from_row(row: MembershipToken) -> TokenRecord:
    return TokenRecord(
        code=row.code,
        email=row.email,
        description=row.description or "",
        access_level=row.access_level,
        expires_at=row.expires_at,
        max_uses=row.max_uses or 0,
        used_count=row.used_count or 0,
        is_active=bool(row.is_active),
        created_by=row.created_by,
        features=list(row.features or []),
        stripe_session_id=row.stripe_session_id,
        purchase_date=row.purchase_date,
        plan=row.plan,
    )


def build_store(settings: Settings, kind: str) -> TokenStore:
    if settings.token_store_backend == "sql":
        return SqlTokenStore(SessionLocal, kind)

    if settings.token_store_backend != "json":
        raise ValueError(f"Unknown TOKEN_STORE_BACKEND {settings.token_store_backend!r}")

    path = settings.manual_tokens_path if kind == MANUAL else settings.auto_tokens_path
    return JsonFileTokenStore(path)
