"""Request and response schemas for the HTTP API."""
from __future__ import annotations

import datetime as dt
import math

from pydantic import BaseModel, ConfigDict, Field

from bulkmail.models.models import DIRECT_HOST, JobStatus, UserPlan


class UsageStatusOut(BaseModel):
    is_limited: bool
    usage: int
    # null when the plan is unlimited
    limit: int | None = None
    remaining: int | None = None
    plan: UserPlan
    unlimited: bool = False

    @classmethod
    def from_status(cls, status) -> "UsageStatusOut":
        unlimited = math.isinf(status.limit)
        return cls(
            is_limited=status.is_limited,
            usage=status.usage,
            limit=None if unlimited else int(status.limit),
            remaining=None if unlimited else int(status.remaining),
            plan=status.plan,
            unlimited=unlimited,
        )


class CampaignCreate(BaseModel):
    recipients: list[str] = Field(min_length=1)
    subject: str
    name: str | None = None
    host: str = DIRECT_HOST
    smtp_identity: str | None = None
    duration_minutes: int = Field(default=0, ge=0)


class CampaignCreatedOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    campaign_id: str
    job_count: int
    job_ids: list[str]


class ClickOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    url: str
    clicked_at: dt.datetime


class JobOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tracking_id: str
    recipient: str
    subject: str
    status: JobStatus
    scheduled_for: dt.datetime
    original_scheduled_for: dt.datetime | None = None
    sent_at: dt.datetime | None = None
    error: str | None = None
    retry_count: int
    max_retries: int
    next_retry_at: dt.datetime | None = None
    sent_via_cron: bool
    opened_at: dt.datetime | None = None
    open_count: int
    survey_choice: str | None = None
    survey_clicked_at: dt.datetime | None = None
    click_count: int = 0
    clicks: list[ClickOut] = []


class JobStatsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total: int
    sent: int
    pending: int
    failed: int
    cancelled: int
    opened: int
    clicked: int = 0


class CampaignJobsOut(BaseModel):
    campaign_id: str
    name: str | None = None
    jobs: list[JobOut]
    stats: JobStatsOut


class CancelJobOut(BaseModel):
    success: bool
    message: str
    status: JobStatus | None = None


class CancelCampaignOut(BaseModel):
    success: bool
    message: str
    count: int


class SurveyStatsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    yes: int
    maybe: int
    no: int
    total: int
    response_rate: float


class HistoryDeleteIn(BaseModel):
    ids: list[str] | None = None


class HistoryDeleteOut(BaseModel):
    success: bool
    count: int


class AccountDeletionOut(BaseModel):
    success: bool
    message: str
    deleted_items: dict[str, int]


class TrackingStatusIn(BaseModel):
    ids: list[str] = Field(min_length=1, max_length=500)


class TrackingStatusOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    opened: bool
    opened_at: dt.datetime | None = None
    open_count: int = 0
