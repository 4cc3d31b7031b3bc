from __future__ import annotations

import datetime as dt
import enum
import secrets
import uuid

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, String, Text, UniqueConstraint, false
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from bulkmail.db.base_class import Base

# Campaign.host value for immediate sends made from the compose screen
DIRECT_HOST = "DIRECT"


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


def new_tracking_id() -> str:
    # 32 URL-safe characters, usable as a path segment
    return secrets.token_urlsafe(24)


class UserPlan(str, enum.Enum):
    FREE = "FREE"
    UNLIMITED = "UNLIMITED"


class JobStatus(str, enum.Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.PENDING


class User(Base):
    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True, index=True)
    name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    # Changed only by administrative action (see scripts/set_legacy_users.py)
    plan: Mapped[UserPlan] = mapped_column(
        Enum(UserPlan, name="user_plan"),
        default=UserPlan.FREE,
        server_default=UserPlan.FREE.value,
        nullable=False,
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
    )

    campaigns: Mapped[list[Campaign]] = relationship("Campaign", back_populates="user")


class Campaign(Base):
    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), index=True)
    # Encrypted display name
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    # "DIRECT" for immediate sends, otherwise the SMTP host of a scheduled campaign
    host: Mapped[str] = mapped_column(String(255), default=DIRECT_HOST)
    # Keyed hashes only; raw IP / SMTP login are never stored
    sender_ip_hash: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    smtp_user_hash: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
    )

    user: Mapped[User] = relationship("User", back_populates="campaigns")
    jobs: Mapped[list[EmailJob]] = relationship("EmailJob", back_populates="campaign")
    attachments: Mapped[list[CampaignAttachment]] = relationship("CampaignAttachment", back_populates="campaign")


class CampaignAttachment(Base):
    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    campaign_id: Mapped[str] = mapped_column(ForeignKey("campaign.id"), index=True)
    filename: Mapped[str] = mapped_column(String(255))
    content_type: Mapped[str] = mapped_column(String(120), default="application/octet-stream")
    # Storage reference to the uploaded file content
    storage_key: Mapped[str] = mapped_column(String(512))
    size: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
    )

    campaign: Mapped[Campaign] = relationship("Campaign", back_populates="attachments")


class EmailJob(Base):
    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    campaign_id: Mapped[str] = mapped_column(ForeignKey("campaign.id"), index=True)
    # Assigned once at creation; the only key tracking endpoints may use
    tracking_id: Mapped[str] = mapped_column(String(64), unique=True, index=True, default=new_tracking_id)
    # Encrypted
    recipient: Mapped[str] = mapped_column(Text)
    subject: Mapped[str] = mapped_column(Text)
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, name="job_status"),
        default=JobStatus.PENDING,
        server_default=JobStatus.PENDING.value,
        index=True,
    )
    scheduled_for: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), index=True)
    original_scheduled_for: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sent_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    max_retries: Mapped[int] = mapped_column(Integer, default=3, server_default="3")
    next_retry_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sent_via_cron: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false())
    opened_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    open_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    survey_choice: Mapped[str | None] = mapped_column(String(64), nullable=True)
    survey_clicked_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
    )

    campaign: Mapped[Campaign] = relationship("Campaign", back_populates="jobs")
    clicks: Mapped[list[Click]] = relationship("Click", back_populates="email_job")


class Click(Base):
    id: Mapped[int] = mapped_column(primary_key=True)
    email_job_id: Mapped[str] = mapped_column(ForeignKey("emailjob.id"), index=True)
    url: Mapped[str] = mapped_column(Text)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
    )

    email_job: Mapped[EmailJob] = relationship("EmailJob", back_populates="clicks")


class UserMonthlyUsage(Base):
    __table_args__ = (UniqueConstraint("user_id", "year", "month", name="uq_user_monthly_usage"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), index=True)
    year: Mapped[int] = mapped_column(Integer)
    month: Mapped[int] = mapped_column(Integer)
    emails_sent: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
