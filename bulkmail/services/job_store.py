"""Campaign and email-job persistence with field-level encryption.

Recipients, subjects and campaign names are encrypted on the way in and
decrypted on the way out; sending IP and SMTP login are stored only as keyed
hashes. Status transitions are not done here, see ``job_lifecycle``.
"""
from __future__ import annotations

import base64
import datetime as dt
import logging
from dataclasses import dataclass
from urllib.parse import quote

from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from bulkmail.core.config import settings
from bulkmail.core.encryption import EncryptionCodec
from bulkmail.core.hashing import IdentifierHasher
from bulkmail.models.models import DIRECT_HOST, Campaign, EmailJob, JobStatus, UserMonthlyUsage, utcnow

logger = logging.getLogger(__name__)

DUE_BATCH_SIZE = 20


@dataclass(frozen=True)
class ClickView:
    url: str
    clicked_at: dt.datetime


@dataclass(frozen=True)
class JobView:
    """Decrypted, read-only projection of an ``EmailJob`` row."""

    id: str
    campaign_id: str
    tracking_id: str
    recipient: str
    subject: str
    status: JobStatus
    scheduled_for: dt.datetime
    original_scheduled_for: dt.datetime | None
    sent_at: dt.datetime | None
    error: str | None
    retry_count: int
    max_retries: int
    next_retry_at: dt.datetime | None
    sent_via_cron: bool
    opened_at: dt.datetime | None
    open_count: int
    survey_choice: str | None
    survey_clicked_at: dt.datetime | None
    clicks: tuple[ClickView, ...] = ()

    @property
    def click_count(self) -> int:
        return len(self.clicks)


@dataclass(frozen=True)
class JobStats:
    total: int = 0
    sent: int = 0
    pending: int = 0
    failed: int = 0
    cancelled: int = 0
    opened: int = 0
    clicked: int = 0


class CampaignJobStore:
    def __init__(self, db: Session, codec: EncryptionCodec, hasher: IdentifierHasher):
        self.db = db
        self.codec = codec
        self.hasher = hasher

    # -- writes ---------------------------------------------------------------

    def create_campaign(
        self,
        user_id: int,
        *,
        name: str | None = None,
        host: str = DIRECT_HOST,
        ip_address: str | None = None,
        smtp_identity: str | None = None,
    ) -> Campaign:
        campaign = Campaign(
            user_id=user_id,
            name=self.codec.encrypt(name) if name else None,
            host=host or DIRECT_HOST,
            sender_ip_hash=self.hasher.hash_ip(ip_address) if ip_address else None,
            smtp_user_hash=self.hasher.hash_smtp_identity(smtp_identity) if smtp_identity else None,
        )
        self.db.add(campaign)
        self.db.flush()
        return campaign

    def add_job(
        self,
        campaign: Campaign,
        recipient: str,
        subject: str,
        scheduled_for: dt.datetime,
        max_retries: int | None = None,
    ) -> EmailJob:
        job = EmailJob(
            campaign_id=campaign.id,
            recipient=self.codec.encrypt(recipient),
            subject=self.codec.encrypt(subject),
            status=JobStatus.PENDING,
            scheduled_for=scheduled_for,
            original_scheduled_for=scheduled_for,
            retry_count=0,
            max_retries=settings.DEFAULT_MAX_RETRIES if max_retries is None else max_retries,
        )
        self.db.add(job)
        return job

    def record_monthly_usage(self, user_id: int, count: int, now: dt.datetime | None = None) -> None:
        """Add ``count`` to the user's counter for the current month.

        Best effort: errors are logged and swallowed. Commits its own
        transaction, so call it only after the caller's writes are committed.
        """
        now = now or utcnow()
        keys = and_(
            UserMonthlyUsage.user_id == user_id,
            UserMonthlyUsage.year == now.year,
            UserMonthlyUsage.month == now.month,
        )
        increment = (
            update(UserMonthlyUsage)
            .where(keys)
            .values(emails_sent=UserMonthlyUsage.emails_sent + count)
            .execution_options(synchronize_session=False)
        )
        try:
            if self.db.execute(increment).rowcount == 0:
                self.db.add(UserMonthlyUsage(user_id=user_id, year=now.year, month=now.month, emails_sent=count))
                try:
                    self.db.commit()
                except IntegrityError:
                    # Another request created the row first
                    self.db.rollback()
                    self.db.execute(increment)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to update monthly usage for user %s", user_id)

    # -- reads ----------------------------------------------------------------

    def get_monthly_usage(self, user_id: int, now: dt.datetime | None = None) -> int:
        now = now or utcnow()
        emails_sent = self.db.scalar(
            select(UserMonthlyUsage.emails_sent).where(
                UserMonthlyUsage.user_id == user_id,
                UserMonthlyUsage.year == now.year,
                UserMonthlyUsage.month == now.month,
            )
        )
        return emails_sent or 0

    def get_job(self, job_id: str) -> EmailJob | None:
        return self.db.get(EmailJob, job_id, populate_existing=True)

    def get_job_by_tracking_id(self, tracking_id: str) -> EmailJob | None:
        return self.db.scalar(
            select(EmailJob).where(EmailJob.tracking_id == tracking_id).execution_options(populate_existing=True)
        )

    def campaign_name(self, campaign: Campaign) -> str | None:
        return self.codec.decrypt(campaign.name)

    def to_view(self, job: EmailJob) -> JobView:
        return JobView(
            id=job.id,
            campaign_id=job.campaign_id,
            tracking_id=job.tracking_id,
            recipient=self.codec.decrypt(job.recipient),
            subject=self.codec.decrypt(job.subject),
            status=job.status,
            scheduled_for=job.scheduled_for,
            original_scheduled_for=job.original_scheduled_for,
            sent_at=job.sent_at,
            error=job.error,
            retry_count=job.retry_count or 0,
            max_retries=job.max_retries,
            next_retry_at=job.next_retry_at,
            sent_via_cron=bool(job.sent_via_cron),
            opened_at=job.opened_at,
            open_count=job.open_count or 0,
            survey_choice=job.survey_choice,
            survey_clicked_at=job.survey_clicked_at,
            clicks=tuple(
                ClickView(url=c.url, clicked_at=c.created_at) for c in sorted(job.clicks, key=lambda c: c.id)
            ),
        )

    def list_campaign_jobs(self, campaign_id: str) -> tuple[list[JobView], JobStats]:
        jobs = self.db.scalars(
            select(EmailJob)
            .where(EmailJob.campaign_id == campaign_id)
            .order_by(EmailJob.created_at.desc())
            .options(selectinload(EmailJob.clicks))
            .execution_options(populate_existing=True)
        ).all()
        stats = JobStats(
            total=len(jobs),
            sent=sum(1 for j in jobs if j.status == JobStatus.SENT),
            pending=sum(1 for j in jobs if j.status == JobStatus.PENDING),
            failed=sum(1 for j in jobs if j.status == JobStatus.FAILED),
            cancelled=sum(1 for j in jobs if j.status == JobStatus.CANCELLED),
            opened=sum(1 for j in jobs if j.opened_at is not None),
            clicked=sum(1 for j in jobs if j.clicks),
        )
        return [self.to_view(j) for j in jobs], stats

    def list_due_jobs(self, now: dt.datetime | None = None, limit: int = DUE_BATCH_SIZE) -> list[EmailJob]:
        """PENDING jobs whose scheduled time has passed, oldest first."""
        now = now or utcnow()
        return list(
            self.db.scalars(
                select(EmailJob)
                .where(EmailJob.status == JobStatus.PENDING, EmailJob.scheduled_for <= now)
                .order_by(EmailJob.scheduled_for)
                .limit(limit)
            ).all()
        )


def pixel_url(tracking_id: str, base_url: str | None = None) -> str:
    base = (base_url or settings.APP_URL).rstrip("/")
    return f"{base}/track/open/{tracking_id}/pixel.png"


def click_url(tracking_id: str, destination: str, base_url: str | None = None) -> str:
    base = (base_url or settings.APP_URL).rstrip("/")
    encoded = base64.b64encode(destination.encode("utf-8")).decode("ascii")
    return f"{base}/track/click/{tracking_id}?url={quote(encoded, safe='')}"


def survey_url(tracking_id: str, choice: str, base_url: str | None = None) -> str:
    base = (base_url or settings.APP_URL).rstrip("/")
    return f"{base}/track/survey/{tracking_id}/{quote(choice, safe='')}"
