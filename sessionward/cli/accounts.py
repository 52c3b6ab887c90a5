"""CLI commands for account and session maintenance."""

import argparse
import asyncio
import sys
from typing import Awaitable, Optional

import structlog

import sessionward
from sessionward.auth.schemas import normalize_email
from sessionward.common.clock import utc_now
from sessionward.core.db import AuthRepository
from sessionward.core.models import Account

logger = structlog.get_logger(__name__)


async def _open_repository() -> AuthRepository:
    await sessionward.configure(config=sessionward._config)
    return await sessionward.get_repository()


async def _find_account(repo: AuthRepository, email: str) -> Optional[Account]:
    account = await repo.find_account_by_email(normalize_email(email))
    if account is None:
        print(f"Error: Account '{email}' not found", file=sys.stderr)
    return account


async def list_accounts() -> None:
    """Print every account with its lockout and verification state."""
    repo = await _open_repository()
    accounts = await repo.list_accounts()

    if not accounts:
        print("No accounts found")
        return

    print(
        f"{'ID':<5} {'Email':<32} {'Provider':<9} {'Verified':<9} "
        f"{'Enabled':<8} {'Failures':<9} {'Locked Since':<20} {'Last Login':<20}"
    )
    print("-" * 118)
    for account in accounts:
        locked = account.locked_since.strftime("%Y-%m-%d %H:%M:%S") if account.locked_since else "-"
        last_login = (
            account.last_login_at.strftime("%Y-%m-%d %H:%M:%S") if account.last_login_at else "Never"
        )
        print(
            f"{account.id:<5} {account.email:<32} {account.provider.value:<9} "
            f"{'Yes' if account.email_verified else 'No':<9} "
            f"{'Yes' if account.enabled else 'No':<8} {account.failed_attempts:<9} "
            f"{locked:<20} {last_login:<20}"
        )


async def unlock_account(email: str) -> bool:
    """Clear the lock and failure counter of an account."""
    repo = await _open_repository()
    account = await _find_account(repo, email)
    if account is None:
        return False

    await repo.unlock_account(account.id)
    print(f"Account '{account.email}' unlocked")
    logger.info("account_unlocked_via_cli", account_id=account.id)
    return True


async def set_enabled(email: str, enabled: bool) -> bool:
    """Enable or disable an account; disabling also revokes its sessions."""
    repo = await _open_repository()
    account = await _find_account(repo, email)
    if account is None:
        return False

    await repo.set_account_enabled(account.id, enabled)
    revoked = 0 if enabled else await repo.revoke_all_sessions(account.id)
    state = "enabled" if enabled else "disabled"
    print(f"Account '{account.email}' {state}" + (f", {revoked} session(s) revoked" if revoked else ""))
    logger.info("account_enabled_changed_via_cli", account_id=account.id, enabled=enabled)
    return True


async def revoke_sessions(email: str) -> bool:
    """Revoke every session of an account (logout from all devices)."""
    repo = await _open_repository()
    account = await _find_account(repo, email)
    if account is None:
        return False

    count = await repo.revoke_all_sessions(account.id)
    print(f"Revoked {count} session(s) for '{account.email}'")
    logger.info("sessions_revoked_via_cli", account_id=account.id, count=count)
    return True


async def sweep_sessions() -> int:
    """Delete expired sessions of every account."""
    repo = await _open_repository()
    count = await repo.delete_expired_sessions(utc_now())
    print(f"Deleted {count} expired session(s)")
    return count


async def purge_unverified() -> int:
    """Delete local accounts whose verification token expired unused."""
    repo = await _open_repository()
    count = await repo.delete_unverified_accounts(utc_now())
    print(f"Deleted {count} unverified account(s) with an expired verification token")
    return count


async def _run(command: Awaitable) -> object:
    try:
        return await command
    finally:
        await sessionward.shutdown()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sessionward-accounts",
        description="sessionward account and session maintenance",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser(
        "list",
        help="List all accounts",
        description="Display every account with lockout and login state",
    )

    for name, help_text in (
        ("unlock", "Clear the lockout of an account"),
        ("disable", "Disable an account and revoke its sessions"),
        ("enable", "Re-enable a disabled account"),
        ("revoke-sessions", "Revoke every session of an account"),
    ):
        command_parser = subparsers.add_parser(name, help=help_text, description=help_text)
        command_parser.add_argument("--email", "-e", required=True, help="Account email")

    subparsers.add_parser(
        "sweep-sessions",
        help="Delete expired sessions",
        description="Delete every expired session regardless of account",
    )

    subparsers.add_parser(
        "purge-unverified",
        help="Delete stale unverified accounts",
        description="Delete local accounts whose email verification token expired unused",
    )
    return parser


def main(argv: Optional[list] = None) -> None:
    """Main entry point for account CLI commands."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "list":
        asyncio.run(_run(list_accounts()))
        sys.exit(0)
    elif args.command == "unlock":
        success = asyncio.run(_run(unlock_account(args.email)))
    elif args.command == "disable":
        success = asyncio.run(_run(set_enabled(args.email, enabled=False)))
    elif args.command == "enable":
        success = asyncio.run(_run(set_enabled(args.email, enabled=True)))
    elif args.command == "revoke-sessions":
        success = asyncio.run(_run(revoke_sessions(args.email)))
    elif args.command == "sweep-sessions":
        asyncio.run(_run(sweep_sessions()))
        success = True
    else:
        asyncio.run(_run(purge_unverified()))
        success = True

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
