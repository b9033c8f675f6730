"""Operator commands for the weekly digest service.

Usage:
    weekly-digest-manage create-admin --uid <uid> --email <email> [--name NAME]
    weekly-digest-manage issue-key --uid <uid> [--name NAME] [--rpm N]
    weekly-digest-manage revoke-key --key-id <id>
    weekly-digest-manage poll

Raw API keys are printed once and never stored.
"""

import argparse
import asyncio
import json
import secrets
import sys

from app.database import get_db, init_db
from app.deps import _hash_key
from app.models.api_key import ApiKey
from app.models.user import ROLE_ADMIN, User
from weekly_digest.custom_ids import SEPARATOR


def issue_key(uid: str, name: str = "admin-cli", rpm: int = 60) -> str:
    """Create an API key for ``uid`` and return the raw key."""
    raw_key = f"wdk_{secrets.token_urlsafe(32)}"
    db = get_db()
    try:
        if db.get(User, uid) is None:
            raise SystemExit(f"Error: user {uid} does not exist")
        db.add(ApiKey(user_id=uid, name=name, key_hash=_hash_key(raw_key), rate_limit_rpm=rpm))
        db.commit()
    finally:
        db.close()
    return raw_key


def create_admin(uid: str, email: str, name: str = "") -> None:
    """Create the user (or promote an existing one) with the admin role."""
    if SEPARATOR in uid:
        raise SystemExit(f"Error: user ids cannot contain '{SEPARATOR}'")
    db = get_db()
    try:
        user = db.get(User, uid)
        if user is None:
            user = User(id=uid, email=email, name=name or email)
            db.add(user)
        user.role = ROLE_ADMIN
        db.commit()
    finally:
        db.close()


def revoke_key(key_id: int) -> bool:
    db = get_db()
    try:
        api_key = db.get(ApiKey, key_id)
        if api_key is None:
            return False
        api_key.revoked = True
        db.commit()
        return True
    finally:
        db.close()


def run_poll_cycle() -> dict:
    """Run one poll cycle in this process, for external cron."""
    from app.logging_config import configure_logging
    from app.config import settings
    from app.services.pipeline import get_pipeline

    configure_logging(settings.log_level)
    report = asyncio.run(get_pipeline().poller.run_cycle())
    return report.to_dict()


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Weekly Digest - operator commands")
    sub = parser.add_subparsers(dest="command", required=True)

    admin = sub.add_parser("create-admin", help="Create or promote an admin user and issue a key")
    admin.add_argument("--uid", required=True)
    admin.add_argument("--email", required=True)
    admin.add_argument("--name", default="")

    issue = sub.add_parser("issue-key", help="Issue an API key for an existing user")
    issue.add_argument("--uid", required=True)
    issue.add_argument("--name", default="admin-cli")
    issue.add_argument("--rpm", type=int, default=60)

    revoke = sub.add_parser("revoke-key", help="Revoke an API key")
    revoke.add_argument("--key-id", type=int, required=True)

    sub.add_parser("poll", help="Run one poll cycle now")

    args = parser.parse_args()
    init_db()

    if args.command == "create-admin":
        create_admin(args.uid, args.email, args.name)
        print(f"Admin user: {args.uid}")
        print(f"API key (shown once): {issue_key(args.uid)}")
    elif args.command == "issue-key":
        print(f"API key (shown once): {issue_key(args.uid, args.name, args.rpm)}")
    elif args.command == "revoke-key":
        if not revoke_key(args.key_id):
            print(f"Error: API key {args.key_id} not found")
            sys.exit(1)
        print(f"Revoked API key {args.key_id}")
    elif args.command == "poll":
        print(json.dumps(run_poll_cycle(), indent=2))


if __name__ == "__main__":
    main()
