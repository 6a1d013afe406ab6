from __future__ import annotations

import argparse
import asyncio
import sys

from familytree.domain import actions
from familytree.domain.models import Profile
from familytree.domain.permissions import normalize_role
from familytree.persistence.db import SessionLocal
from familytree.services.audit import append_entry, snapshot
from familytree.services.auth import create_access_token
from familytree.services.gateway import bump


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Set a profile's role and link it to a login")
    parser.add_argument("--profile-id", required=True, help="Profile to update")
    parser.add_argument("--role", required=True, help="Role: user|moderator|admin|super_admin")
    parser.add_argument("--user-id", default=None, help="Authentication subject to link")
    parser.add_argument("--print-token", action="store_true", help="Print a short-lived access token")
    return parser


async def _grant_role(args: argparse.Namespace) -> int:
    role = normalize_role(args.role)
    async with SessionLocal() as session:
        profile = await session.get(Profile, args.profile_id)
        if profile is None or profile.deleted_at is not None:
            raise ValueError(f"Unknown profile: {args.profile_id}")
        old_data = snapshot(profile)
        profile.role = role
        if args.user_id:
            profile.user_id = args.user_id
        bump(profile)
        await session.flush()
        # Operator changes land in the same history as API changes; the actor is the system.
        await append_entry(
            session,
            action_kind=actions.ROLE_CHANGED,
            record_id=profile.id,
            actor_id=None,
            old_data=old_data,
            new_data=snapshot(profile),
            description="grant_role script",
        )
        await session.commit()
        user_id = profile.user_id

    print(f"Profile {args.profile_id} now has role {role}.")
    if args.print_token:
        if not user_id:
            raise ValueError("Profile has no linked user id; pass --user-id")
        print("  access_token: ")
        print(f"    {create_access_token(user_id)}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_grant_role(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"grant_role failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
