"""Single ownership check for campaign- and job-scoped operations.

A resource that is missing and a resource owned by someone else produce the
same NotFound error so callers cannot probe for other users' ids.
"""
from __future__ import annotations

import re

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from bulkmail.core.audit import log_denied
from bulkmail.core.exceptions import CampaignNotFoundError, InvalidIdentifierError, JobNotFoundError
from bulkmail.models.models import Campaign, EmailJob

_RESOURCE_ID_RE = re.compile(r"^[0-9a-f]{32}$")


def validate_resource_id(field: str, value: str) -> str:
    """Reject ids that could not have been issued before touching the store."""
    if not isinstance(value, str) or not _RESOURCE_ID_RE.match(value):
        raise InvalidIdentifierError(field, value)
    return value


def get_owned_campaign(db: Session, campaign_id: str, user_id: int) -> Campaign:
    validate_resource_id("campaign_id", campaign_id)
    campaign = db.get(Campaign, campaign_id)
    if campaign is None:
        raise CampaignNotFoundError(campaign_id)
    if campaign.user_id != user_id:
        log_denied("campaign.access", user_id=user_id, reason="not_owner", campaign_id=campaign_id)
        raise CampaignNotFoundError(campaign_id)
    return campaign


def get_owned_job(db: Session, job_id: str, user_id: int) -> EmailJob:
    validate_resource_id("job_id", job_id)
    job = db.scalar(
        select(EmailJob)
        .options(joinedload(EmailJob.campaign))
        .where(EmailJob.id == job_id)
        .execution_options(populate_existing=True)
    )
    if job is None:
        raise JobNotFoundError(job_id)
    if job.campaign.user_id != user_id:
        log_denied("job.access", user_id=user_id, reason="not_owner", job_id=job_id)
        raise JobNotFoundError(job_id)
    return job
