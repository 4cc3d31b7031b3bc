#!/usr/bin/env python3
"""
Grant the UNLIMITED plan to accounts created before the free-plan cutover.

Usage:
    python scripts/set_legacy_users.py            # apply
    python scripts/set_legacy_users.py --dry-run  # only report
"""
import argparse
import sys

from sqlalchemy import func, select, update

from bulkmail.core.config import settings
from bulkmail.db.session import SessionLocal, session_scope
from bulkmail.models.models import User, UserPlan


def set_legacy_users(dry_run: bool = False) -> int:
    """Move FREE users created before the cutoff to UNLIMITED. Returns the count."""
    cutoff = settings.UNLIMITED_PLAN_CUTOFF
    with session_scope() as db:
        eligible = db.scalar(
            select(func.count(User.id)).where(User.plan == UserPlan.FREE, User.created_at < cutoff)
        ) or 0
        print(f"Cutoff: {cutoff.isoformat()}")
        print(f"Legacy FREE users found: {eligible}")
        if dry_run or not eligible:
            return eligible

        result = db.execute(
            update(User)
            .where(User.plan == UserPlan.FREE, User.created_at < cutoff)
            .values(plan=UserPlan.UNLIMITED)
            .execution_options(synchronize_session=False)
        )
        print(f"Updated {result.rowcount} users to UNLIMITED")
        return result.rowcount


def print_plan_distribution() -> None:
    db = SessionLocal()
    try:
        rows = db.execute(select(User.plan, func.count(User.id)).group_by(User.plan)).all()
        print("\n=== PLAN DISTRIBUTION ===")
        for plan, count in rows:
            print(f"  {plan.value}: {count}")
    finally:
        db.close()


def main() -> int:
    parser = argparse.ArgumentParser(description="Grant UNLIMITED to legacy accounts")
    parser.add_argument("--dry-run", action="store_true", help="Report without updating")
    args = parser.parse_args()

    try:
        set_legacy_users(dry_run=args.dry_run)
    except Exception as exc:  # noqa: BLE001
        print(f"Error: {exc}")
        return 1
    print_plan_distribution()
    return 0


if __name__ == "__main__":
    sys.exit(main())
