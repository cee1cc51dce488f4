from __future__ import annotations

import argparse
import asyncio
import sys

from reduct.core.logging import configure_logging
from reduct.domain.models import User
from reduct.persistence.db import SessionLocal
from reduct.persistence.repos.users import get_user_by_email
from reduct.services.audit import record_event
from reduct.services.auth.identity import create_personal_tenant, grant_platform_role
from reduct.services.auth.passwords import hash_password, validate_password


PLATFORM_ROLE_CHOICES = ("owner", "admin")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create or promote a platform administrator")
    parser.add_argument("--email", required=True, help="Account email")
    parser.add_argument("--password", default=None, help="Required when the account does not exist yet")
    parser.add_argument("--full-name", default=None, help="Display name for new accounts")
    parser.add_argument("--role", default="admin", choices=PLATFORM_ROLE_CHOICES, help="Platform role slug")
    return parser


async def _promote(args: argparse.Namespace) -> int:
    email = args.email.strip().lower()
    async with SessionLocal() as session:
        try:
            user = await get_user_by_email(session, email)
            created = False
            if user is None:
                if not args.password:
                    raise ValueError("--password is required to create a new account")
                password_error = validate_password(args.password)
                if password_error:
                    raise ValueError(password_error)
                user = User(
                    email=email,
                    password_hash=hash_password(args.password),
                    full_name=args.full_name,
                    status="active",
                    email_verified=True,
                )
                session.add(user)
                await session.flush()
                await create_personal_tenant(session, user=user)
                created = True
            granted = await grant_platform_role(session, user_id=user.id, slug=args.role)
            await session.commit()
        except Exception:
            await session.rollback()
            raise

        await record_event(
            session=session,
            tenant_id=None,
            actor_type="system",
            actor_id="create_platform_admin",
            actor_role=args.role,
            event_type="users.platform_admin.granted",
            outcome="success",
            resource_type="user",
            resource_id=user.id,
            metadata={"created": created, "granted": granted, "role": args.role},
            commit=True,
            best_effort=False,
        )

    print("Platform admin ready:")
    print(f"  user_id: {user.id}")
    print(f"  email: {user.email}")
    print(f"  role: {args.role} ({'granted' if granted else 'already granted'})")
    return 0


def main() -> int:
    configure_logging()
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_promote(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"create_platform_admin failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
