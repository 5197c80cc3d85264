#!/usr/bin/env python3
"""Promote an existing CourseSphere profile to admin or super_admin.

Roles cannot be chosen at self-registration above ``student``,
``instructor`` or ``org_employee``; this script is the way operators grant
the privileged ones.

Usage:
    python scripts/bootstrap_admin.py --user-id 7f0c... --role super_admin
    ADMIN_USER_ID=7f0c... python scripts/bootstrap_admin.py --dry-run

Environment Variables:
    ADMIN_USER_ID: Profile id (identity provider user id) to promote
    SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY: record store connection
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys

from coursesphere.storage.models import Role

PRIVILEGED_ROLES = (Role.ADMIN.value, Role.SUPER_ADMIN.value)


async def promote_profile(store, user_id: str, role: str, dry_run: bool = False) -> dict:
    """Set ``role`` on the profile ``user_id``.

    Returns:
        dict with user_id, role and status ('promoted', 'already_assigned',
        'dry_run' or 'missing')
    """
    if role not in PRIVILEGED_ROLES:
        raise ValueError(f"role must be one of {', '.join(PRIVILEGED_ROLES)}")

    profile = await store.get_profile(user_id)
    if profile is None:
        print(f"No profile found for user {user_id}")
        return {"user_id": user_id, "role": role, "status": "missing"}

    if profile.role == role:
        print(f"User {user_id} already has role {role}")
        return {"user_id": user_id, "role": role, "status": "already_assigned"}

    if dry_run:
        print(f"[DRY RUN] Would change role of {user_id} from {profile.role} to {role}")
        return {"user_id": user_id, "role": role, "status": "dry_run"}

    previous_role = profile.role
    await store.update_profile_role(user_id, role)
    print(f"Changed role of {user_id} from {previous_role} to {role}")
    return {
        "user_id": user_id,
        "role": role,
        "previous_role": previous_role,
        "status": "promoted",
    }


def main():
    parser = argparse.ArgumentParser(
        description="Promote a CourseSphere profile to a privileged role",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--user-id",
        default=os.environ.get("ADMIN_USER_ID"),
        help="Profile id to promote (or set ADMIN_USER_ID env var)",
    )
    parser.add_argument(
        "--role",
        default=Role.ADMIN.value,
        choices=PRIVILEGED_ROLES,
        help="Role to grant (default: admin)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args()

    if not args.user_id:
        print("Error: --user-id or ADMIN_USER_ID environment variable required")
        sys.exit(1)

    # Imported late so the environment is read after argument parsing
    from coursesphere.service.runtime import get_runtime

    try:
        runtime = get_runtime()
        result = asyncio.run(
            promote_profile(runtime.store, args.user_id, args.role, args.dry_run)
        )
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    if result["status"] == "missing":
        sys.exit(2)


if __name__ == "__main__":
    main()
