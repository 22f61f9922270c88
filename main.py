#!/usr/bin/env python3
"""
WorkBridge Accounts -- maintenance commands for operators.

The HTTP service lives in api/main.py. This script works on the same database
(DATABASE_URL) without starting the server.

Usage:
  python main.py purge
  python main.py revoke-sessions someone@example.com

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the account database (default: sqlite:///workbridge_accounts.db)
  SECRET_KEY     Must match the server's key, or session digests will not line up
"""

import argparse
import logging
import sys
from typing import Optional

from accounts.lifecycle import AccountLifecycle, build_lifecycle
from accounts.notify import LogNotifier
from accounts.store import AccountStore
from core.config import get_settings
from core.errors import AccountError

logger = logging.getLogger("workbridge.cli")


def run_purge(lifecycle: AccountLifecycle) -> int:
    """Delete expired OTP records and stale verification tokens."""
    otp_count, token_count = lifecycle.purge_expired()
    print(f"Purged {otp_count} OTP record(s) and {token_count} verification token(s).")
    return 0


def run_revoke_sessions(lifecycle: AccountLifecycle, email: str) -> int:
    """End every session of one account, e.g. after a reported compromise."""
    account = lifecycle.vault.find_by_email(email)
    if account is None:
        print(f"  [!] No account registered for {email}.")
        return 1
    count = lifecycle.sessions.revoke_all(account.id)
    print(f"Revoked {count} session(s) for account {account.id}.")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="workbridge-accounts",
        description="Maintenance commands for the WorkBridge account database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py purge
  python main.py revoke-sessions someone@example.com
  DATABASE_URL=sqlite:///prod.db python main.py purge
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.add_parser("purge", help="Delete expired OTP records and stale verification tokens")
    revoke = sub.add_parser("revoke-sessions", help="Revoke every session of one account")
    revoke.add_argument("email", metavar="EMAIL", help="Email address of the account")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 2

    logging.basicConfig(level=logging.WARNING, format="%(levelname)-5s %(name)s %(message)s")
    settings = get_settings()
    store = AccountStore(settings.database_url, timeout=settings.db_timeout_seconds)
    # Maintenance commands never notify anyone.
    lifecycle = build_lifecycle(settings, store, LogNotifier())
    try:
        if args.command == "purge":
            return run_purge(lifecycle)
        return run_revoke_sessions(lifecycle, args.email)
    except AccountError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
