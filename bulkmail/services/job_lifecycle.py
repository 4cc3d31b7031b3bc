"""Email job state machine.

PENDING is the only non-terminal status; SENT, FAILED and CANCELLED are final.
Every transition is a single UPDATE guarded on the expected current status, so
a user cancelling and the dispatcher sending the same job cannot both win. The
loser sees zero affected rows and reports a no-op rather than an error.
"""
from __future__ import annotations

import datetime as dt
import enum
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from bulkmail import metrics
from bulkmail.core.audit import log_audit_event
from bulkmail.core.config import settings
from bulkmail.core.exceptions import JobAlreadyFinishedError, JobNotFoundError, QuotaExceededError
from bulkmail.models.models import DIRECT_HOST, Campaign, EmailJob, JobStatus, utcnow
from bulkmail.services.job_store import CampaignJobStore
from bulkmail.services.ownership import get_owned_campaign, get_owned_job
from bulkmail.services.quota_service import UsageQuotaEngine

logger = logging.getLogger(__name__)


class CancelOutcome(str, enum.Enum):
    CANCELLED = "cancelled"
    ALREADY_FINISHED = "already_finished"


class FailureOutcome(str, enum.Enum):
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"
    # Job was no longer PENDING, or another worker updated it first
    NOOP = "noop"


@dataclass(frozen=True)
class CancelResult:
    job_id: str
    outcome: CancelOutcome
    status: JobStatus

    @property
    def success(self) -> bool:
        return self.outcome is CancelOutcome.CANCELLED


@dataclass(frozen=True)
class SubmissionResult:
    campaign_id: str
    job_count: int
    job_ids: list[str] = field(default_factory=list)


def spread_schedule(count: int, start: dt.datetime, duration_minutes: int = 0) -> list[dt.datetime]:
    """Evenly space ``count`` sends from ``start`` to ``start + duration``."""
    if duration_minutes <= 0 or count <= 1:
        return [start] * count
    step = dt.timedelta(minutes=duration_minutes) / (count - 1)
    return [start + step * index for index in range(count)]


class JobLifecycleController:
    def __init__(self, db: Session, store: CampaignJobStore, quota: UsageQuotaEngine | None = None):
        self.db = db
        self.store = store
        self.quota = quota

    def create_job(
        self,
        campaign: Campaign,
        recipient: str,
        subject: str,
        scheduled_for: dt.datetime | None = None,
    ) -> EmailJob:
        """Add a PENDING job to ``campaign``. The caller commits."""
        job = self.store.add_job(campaign, recipient, subject, scheduled_for or utcnow())
        self.db.flush()
        return job

    def submit_campaign(
        self,
        user_id: int,
        recipients: Sequence[str],
        subject: str,
        *,
        name: str | None = None,
        host: str = DIRECT_HOST,
        ip_address: str | None = None,
        smtp_identity: str | None = None,
        duration_minutes: int = 0,
        now: dt.datetime | None = None,
    ) -> SubmissionResult:
        """Create a campaign and its jobs if the correlated quota allows it.

        The allowance check and the inserts share one transaction with the
        user row locked, so concurrent submissions cannot both take the last
        remaining sends. Nothing is written when the quota would be exceeded.
        """
        if not recipients:
            raise ValueError("At least one recipient is required")
        if self.quota is None:
            raise RuntimeError("submit_campaign requires a UsageQuotaEngine")
        now = now or utcnow()

        try:
            if not self.db.in_transaction() and self.db.get_bind().dialect.name == "postgresql":
                self.db.connection(execution_options={"isolation_level": "SERIALIZABLE"})

            status = self.quota.usage_for_admission(user_id, ip_address, smtp_identity, now=now)
            if status.is_limited and len(recipients) > status.remaining:
                metrics.quota_rejected()
                raise QuotaExceededError(
                    requested=len(recipients),
                    remaining=int(status.remaining),
                    limit=int(status.limit),
                )

            campaign = self.store.create_campaign(
                user_id,
                name=name,
                host=host,
                ip_address=ip_address,
                smtp_identity=smtp_identity,
            )
            schedule = spread_schedule(len(recipients), now, duration_minutes)
            jobs = [
                self.create_job(campaign, recipient, subject, scheduled_for)
                for recipient, scheduled_for in zip(recipients, schedule)
            ]
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        metrics.jobs_created(len(jobs))
        logger.info("Campaign %s created with %d jobs for user %s", campaign.id, len(jobs), user_id)
        self.store.record_monthly_usage(user_id, len(jobs), now=now)
        return SubmissionResult(campaign_id=campaign.id, job_count=len(jobs), job_ids=[j.id for j in jobs])

    def cancel_job(self, job_id: str, user_id: int, strict: bool = False) -> CancelResult:
        """Cancel one PENDING job.

        A job that already finished is reported through the result; with
        ``strict`` it raises ``JobAlreadyFinishedError`` instead.
        """
        job = get_owned_job(self.db, job_id, user_id)
        result = self.db.execute(
            update(EmailJob)
            .where(EmailJob.id == job.id, EmailJob.status == JobStatus.PENDING)
            .values(status=JobStatus.CANCELLED, next_retry_at=None)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

        if result.rowcount == 1:
            metrics.jobs_cancelled(1, scope="job")
            log_audit_event("job.cancelled", user_id=user_id, job_id=job.id)
            return CancelResult(job.id, CancelOutcome.CANCELLED, JobStatus.CANCELLED)

        current = self.db.scalar(select(EmailJob.status).where(EmailJob.id == job.id))
        if current is None:
            # Row removed between the ownership check and the update
            raise JobNotFoundError(job.id)
        logger.info("Cancel of job %s skipped; status is %s", job.id, current)
        if strict:
            raise JobAlreadyFinishedError(job.id, current.value)
        return CancelResult(job.id, CancelOutcome.ALREADY_FINISHED, current)

    def cancel_campaign(self, campaign_id: str, user_id: int) -> int:
        """Cancel every PENDING job of the campaign; returns how many changed."""
        campaign = get_owned_campaign(self.db, campaign_id, user_id)
        result = self.db.execute(
            update(EmailJob)
            .where(EmailJob.campaign_id == campaign.id, EmailJob.status == JobStatus.PENDING)
            .values(status=JobStatus.CANCELLED, next_retry_at=None)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        count = result.rowcount
        metrics.jobs_cancelled(count, scope="campaign")
        log_audit_event("campaign.cancelled", user_id=user_id, campaign_id=campaign.id, count=count)
        return count

    def record_failure(self, job_id: str, error: str, now: dt.datetime | None = None) -> FailureOutcome:
        """Retry bookkeeping after a failed send attempt.

        Each failure counts one attempt. While attempts stay below
        ``max_retries`` the job is rescheduled with exponential backoff; the
        failure that reaches ``max_retries`` makes it FAILED.
        """
        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status.is_terminal:
            return FailureOutcome.NOOP

        now = now or utcnow()
        attempts = job.retry_count + 1
        if attempts < job.max_retries:
            next_retry_at = now + dt.timedelta(minutes=settings.RETRY_BACKOFF_MINUTES * 2 ** job.retry_count)
            values = {
                "retry_count": attempts,
                "next_retry_at": next_retry_at,
                "scheduled_for": next_retry_at,
                "error": error,
            }
            outcome = FailureOutcome.RETRY_SCHEDULED
        else:
            values = {
                "status": JobStatus.FAILED,
                "retry_count": job.max_retries,
                "next_retry_at": None,
                "error": error,
            }
            outcome = FailureOutcome.FAILED

        result = self.db.execute(
            update(EmailJob)
            .where(
                EmailJob.id == job.id,
                EmailJob.status == JobStatus.PENDING,
                EmailJob.retry_count == job.retry_count,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount == 0:
            return FailureOutcome.NOOP

        metrics.job_failure(outcome.value)
        logger.info("Job %s send failed (attempt %d/%d): %s", job.id, attempts, job.max_retries, outcome.value)
        return outcome

    def mark_sent(self, job_id: str, sent_via_cron: bool = False, now: dt.datetime | None = None) -> bool:
        """PENDING -> SENT. Returns False if the job was no longer PENDING."""
        result = self.db.execute(
            update(EmailJob)
            .where(EmailJob.id == job_id, EmailJob.status == JobStatus.PENDING)
            .values(
                status=JobStatus.SENT,
                sent_at=now or utcnow(),
                next_retry_at=None,
                error=None,
                sent_via_cron=sent_via_cron,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount == 1:
            metrics.job_sent()
            return True
        logger.info("Job %s not marked sent; it is no longer pending", job_id)
        return False
