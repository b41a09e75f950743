"""
MEMBERSHIP TOKEN MANAGEMENT HELPER
Quick script to create and manage manually issued membership codes.

Usage:
    python manage_tokens.py --create "VIP-2025" --level premium --max-uses 100 --expires 2025-12-31
    python manage_tokens.py --create "FRIENDS-ONLY" --description "Friends & family"
    python manage_tokens.py --list
    python manage_tokens.py --deactivate "VIP-2025"
    python manage_tokens.py --activate "VIP-2025"
    python manage_tokens.py --delete "VIP-2025"
    python manage_tokens.py --stats "VIP-2025"
"""

import sys
from datetime import datetime, timezone

from membership.config import get_settings
from membership.schemas import TokenRecord, parse_timestamp
from membership.services.token_store import MANUAL, build_store


def _store(store=None):
    return store if store is not None else build_store(get_settings(), MANUAL)


def create_token(code, level="unlimited", max_uses=0, expires=None, description="", email=None, store=None):
    """Create a new manual token"""
    store = _store(store)
    code = code.strip().upper()

    if store.get(code) is not None:
        print(f"❌ Token '{code}' already exists!")
        return False

    if expires:
        try:
            parse_timestamp(expires)
        except ValueError:
            print("❌ Invalid date format. Use YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS")
            return False

    record = TokenRecord(
        code=code,
        email=email,
        description=description or f"Manual {level} access",
        access_level=level,
        expires_at=expires,
        max_uses=max_uses or 0,
        used_count=0,
        is_active=True,
        created_by="admin",
        features=[],
        purchase_date=datetime.now(timezone.utc).isoformat(),
    )
    store.put(record)

    print("✅ Token created successfully!")
    print(f"   Code: {record.code}")
    print(f"   Access Level: {record.access_level}")
    print(f"   Max Uses: {record.max_uses if record.max_uses else 'Unlimited'}")
    print(f"   Expires: {record.expires_at or 'Never'}")
    print(f"   Active: {record.is_active}")

    return True


def list_tokens(store=None):
    """List all manual tokens"""
    tokens = _store(store).all()

    if not tokens:
        print("No tokens found.")
        return

    print("\n📋 MEMBERSHIP TOKENS:\n")
    print(f"{'Code':<20} {'Level':<12} {'Uses':<12} {'Status':<15} {'Expires':<20}")
    print("-" * 79)

    for t in tokens:
        status = "🟢 Active" if t.is_active else "🔴 Inactive"
        uses = f"{t.used_count or 0}/{t.max_uses}" if t.max_uses else f"{t.used_count or 0}/∞"
        print(f"{t.code:<20} {t.access_level or 'unlimited':<12} {uses:<12} {status:<15} {t.expires_at or 'Never':<20}")

    print()


def _set_active(code, active, store=None):
    store = _store(store)
    record = store.get(code.strip().upper())

    if record is None:
        print(f"❌ Token '{code}' not found!")
        return False

    record.is_active = active
    store.put(record)

    print(f"✅ Token '{record.code}' has been {'activated' if active else 'deactivated'}")
    return True


def deactivate_token(code, store=None):
    """Deactivate a token"""
    return _set_active(code, False, store)


def activate_token(code, store=None):
    """Activate a token"""
    return _set_active(code, True, store)


def delete_token(code, store=None):
    """Delete a token"""
    if not _store(store).delete(code.strip().upper()):
        print(f"❌ Token '{code}' not found!")
        return False

    print(f"✅ Token '{code}' has been deleted")
    return True


def get_token_stats(code, store=None):
    """Get detailed stats for a token"""
    record = _store(store).get(code.strip().upper())

    if record is None:
        print(f"❌ Token '{code}' not found!")
        return False

    print(f"\n📊 TOKEN STATS: {record.code}\n")
    print(f"Description:     {record.description}")
    print(f"Access Level:    {record.access_level or 'unlimited'}")
    print(f"Status:          {'🟢 Active' if record.is_active else '🔴 Inactive'}")
    print(f"Used Count:      {record.used_count or 0}")
    print(f"Max Uses:        {record.max_uses if record.max_uses else 'Unlimited'}")

    if record.max_uses:
        usage_pct = ((record.used_count or 0) / record.max_uses) * 100
        print(f"Usage:           {usage_pct:.1f}% ({record.remaining_uses()} remaining)")

    print(f"Expires:         {record.expires_at or 'Never'}")
    print(f"Expired:         {'Yes ⚠️' if record.is_expired() else 'No'}")
    print()

    return True


def _parse_create_args(argv):
    options = {"level": "unlimited", "max_uses": 0, "expires": None, "description": "", "email": None}

    i = 0
    while i < len(argv):
        flag = argv[i]
        value = argv[i + 1] if i + 1 < len(argv) else None
        if value is None:
            i += 1
        elif flag == "--level":
            options["level"] = value
            i += 2
        elif flag == "--max-uses":
            options["max_uses"] = int(value)
            i += 2
        elif flag == "--expires":
            options["expires"] = value
            i += 2
        elif flag == "--description":
            options["description"] = value
            i += 2
        elif flag == "--email":
            options["email"] = value
            i += 2
        else:
            i += 1

    return options


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv

    if not argv:
        print(__doc__)
        return 1

    command = argv[0]
    single_code_commands = {
        "--deactivate": deactivate_token,
        "--activate": activate_token,
        "--delete": delete_token,
        "--stats": get_token_stats,
    }

    if command == "--create":
        if len(argv) < 2:
            print("Usage: python manage_tokens.py --create <code> [--level L] [--max-uses N] [--expires YYYY-MM-DD]")
            return 1
        return 0 if create_token(argv[1], **_parse_create_args(argv[2:])) else 1

    if command == "--list":
        list_tokens()
        return 0

    if command in single_code_commands:
        if len(argv) < 2:
            print(f"Usage: python manage_tokens.py {command} <code>")
            return 1
        return 0 if single_code_commands[command](argv[1]) else 1

    print(f"Unknown command: {command}")
    print(__doc__)
    return 1


if __name__ == "__main__":
    sys.exit(main())
