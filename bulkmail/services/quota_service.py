"""Monthly send quota for FREE accounts.

Usage is counted across three correlation vectors so a second account does not
reset the allowance: jobs of this user's campaigns, OR of campaigns sent from
the same (hashed) IP, OR of campaigns using the same (hashed) SMTP login.

``check_usage`` is a plain read. Two submissions racing near the limit can both
pass it. ``usage_for_admission`` serves the submission path instead, which
performs the check and the job inserts in a single transaction (see
``JobLifecycleController.submit_campaign``).

The counting window starts at midnight UTC on the first day of the month.
"""
from __future__ import annotations

import datetime as dt
import logging
import math
from dataclasses import dataclass

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from bulkmail import metrics
from bulkmail.core.config import settings
from bulkmail.core.exceptions import UserNotFoundError
from bulkmail.core.hashing import IdentifierHasher
from bulkmail.models.models import Campaign, EmailJob, JobStatus, User, UserPlan, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageStatus:
    is_limited: bool
    usage: int
    # math.inf for UNLIMITED plans
    limit: float
    remaining: float
    plan: UserPlan


def plan_for_signup(created_at: dt.datetime) -> UserPlan:
    """Accounts created before the cutover keep unlimited sending."""
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=dt.timezone.utc)
    return UserPlan.UNLIMITED if created_at < settings.UNLIMITED_PLAN_CUTOFF else UserPlan.FREE


def start_of_month(now: dt.datetime) -> dt.datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class UsageQuotaEngine:
    def __init__(self, db: Session, hasher: IdentifierHasher, monthly_limit: int | None = None):
        self.db = db
        self.hasher = hasher
        self.monthly_limit = settings.MONTHLY_EMAIL_LIMIT if monthly_limit is None else monthly_limit

    def _get_plan(self, user_id: int, for_update: bool = False) -> UserPlan:
        stmt = select(User.plan).where(User.id == user_id)
        if for_update:
            stmt = stmt.with_for_update()
        plan = self.db.scalar(stmt)
        if plan is None:
            raise UserNotFoundError(user_id)
        return plan

    def _correlation_filter(self, user_id: int, ip_address: str | None, smtp_identity: str | None):
        conditions = [Campaign.user_id == user_id]
        if ip_address:
            conditions.append(Campaign.sender_ip_hash == self.hasher.hash_ip(ip_address))
        if smtp_identity:
            conditions.append(Campaign.smtp_user_hash == self.hasher.hash_smtp_identity(smtp_identity))
        return or_(*conditions)

    def _count_sent(self, correlation, window_start: dt.datetime) -> int:
        return self.db.scalar(
            select(func.count(EmailJob.id))
            .join(Campaign, EmailJob.campaign_id == Campaign.id)
            .where(EmailJob.sent_at.is_not(None), EmailJob.sent_at >= window_start, correlation)
        ) or 0

    def _count_reserved(self, correlation) -> int:
        return self.db.scalar(
            select(func.count(EmailJob.id))
            .join(Campaign, EmailJob.campaign_id == Campaign.id)
            .where(EmailJob.status == JobStatus.PENDING, EmailJob.sent_at.is_(None), correlation)
        ) or 0

    def _status(self, usage: int) -> UsageStatus:
        return UsageStatus(
            is_limited=True,
            usage=usage,
            limit=self.monthly_limit,
            remaining=max(0, self.monthly_limit - usage),
            plan=UserPlan.FREE,
        )

    @staticmethod
    def _unlimited() -> UsageStatus:
        return UsageStatus(is_limited=False, usage=0, limit=math.inf, remaining=math.inf, plan=UserPlan.UNLIMITED)

    def check_usage(
        self,
        user_id: int,
        ip_address: str | None = None,
        smtp_identity: str | None = None,
        now: dt.datetime | None = None,
    ) -> UsageStatus:
        """Emails sent this calendar month by the user and any correlated account."""
        plan = self._get_plan(user_id)
        metrics.quota_checked(plan.value)
        if plan == UserPlan.UNLIMITED:
            return self._unlimited()

        window_start = start_of_month(now or utcnow())
        usage = self._count_sent(self._correlation_filter(user_id, ip_address, smtp_identity), window_start)
        return self._status(usage)

    def usage_for_admission(
        self,
        user_id: int,
        ip_address: str | None = None,
        smtp_identity: str | None = None,
        now: dt.datetime | None = None,
    ) -> UsageStatus:
        """Like ``check_usage`` but pending jobs count as already used.

        Locks the user row first; must run inside the transaction that inserts
        the new jobs.
        """
        if self._get_plan(user_id, for_update=True) == UserPlan.UNLIMITED:
            return self._unlimited()

        correlation = self._correlation_filter(user_id, ip_address, smtp_identity)
        window_start = start_of_month(now or utcnow())
        usage = self._count_sent(correlation, window_start) + self._count_reserved(correlation)
        return self._status(usage)
