"""
Maintenance commands

    python -m tenant_auth.cli create-tables
    python -m tenant_auth.cli drop-tables --yes
    python -m tenant_auth.cli purge-tokens
    python -m tenant_auth.cli grant-platform-admin admin@example.com
"""

import argparse
import logging
import sys
from typing import List, Optional

from tenant_auth.core.config import settings
from tenant_auth.core.database import create_schema, drop_schema, session_scope
from tenant_auth.models import AuditLog, PlatformRole, User
from tenant_auth.models.user import normalize_email
from tenant_auth.services import rbac_service, token_service

logger = logging.getLogger(__name__)


def cmd_create_tables(args: argparse.Namespace) -> int:
    tables = create_schema()
    print(f"Tables ready: {', '.join(tables)}")
    return 0


def cmd_drop_tables(args: argparse.Namespace) -> int:
    if settings.is_production and not args.yes:
        print("Refusing to drop tables in production without --yes", file=sys.stderr)
        return 1
    drop_schema()
    print("Tables dropped")
    return 0


def cmd_purge_tokens(args: argparse.Namespace) -> int:
    with session_scope() as db:
        purged = token_service.purge_expired_tokens(db)
    print(f"Purged {purged['refresh_tokens']} refresh tokens and {purged['email_tokens']} email tokens")
    return 0


def cmd_grant_platform_admin(args: argparse.Namespace) -> int:
    email = normalize_email(args.email)
    with session_scope() as db:
        user = db.query(User).filter(User.email == email).first()
        if user is None:
            print(f"No user with email {email}", file=sys.stderr)
            return 1
        rbac_service.grant_platform_role(db, user.id, PlatformRole.PLATFORM_ADMIN)
        AuditLog.record(db, "platform_role_granted", user_id=user.id, meta={"role": "PLATFORM_ADMIN", "via": "cli"})
    print(f"Granted PLATFORM_ADMIN to {email}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tenant_auth", description="Auth API maintenance commands")
    subparsers = parser.add_subparsers(dest="command", required=True)

    create = subparsers.add_parser("create-tables", help="Create all database tables")
    create.set_defaults(func=cmd_create_tables)

    drop = subparsers.add_parser("drop-tables", help="Drop all database tables")
    drop.add_argument("--yes", action="store_true", help="Confirm dropping tables in production")
    drop.set_defaults(func=cmd_drop_tables)

    purge = subparsers.add_parser("purge-tokens", help="Delete expired refresh and email tokens")
    purge.set_defaults(func=cmd_purge_tokens)

    grant = subparsers.add_parser("grant-platform-admin", help="Give a user the PLATFORM_ADMIN role")
    grant.add_argument("email", help="Email of an existing user")
    grant.set_defaults(func=cmd_grant_platform_admin)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
