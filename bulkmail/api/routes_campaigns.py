from typing import Annotated

from fastapi import APIRouter, Path, Request

from bulkmail.api.dependencies import (
    RESOURCE_ID_PATTERN,
    CurrentUserDep,
    DbDep,
    JobStoreDep,
    LifecycleDep,
    TrackingDep,
    client_ip,
)
from bulkmail.api.rate_limit import RATE_LIMITS, limiter
from bulkmail.models import schemas
from bulkmail.services.ownership import get_owned_campaign

router = APIRouter(tags=["campaigns"])

CampaignId = Annotated[str, Path(pattern=RESOURCE_ID_PATTERN)]


@router.post("", response_model=schemas.CampaignCreatedOut, status_code=201)
@limiter.limit(RATE_LIMITS["campaign_submit"])
def create_campaign(
    request: Request,
    payload: schemas.CampaignCreate,
    current_user_id: CurrentUserDep,
    lifecycle: LifecycleDep,
) -> schemas.CampaignCreatedOut:
    result = lifecycle.submit_campaign(
        current_user_id,
        payload.recipients,
        payload.subject,
        name=payload.name,
        host=payload.host,
        ip_address=client_ip(request),
        smtp_identity=payload.smtp_identity,
        duration_minutes=payload.duration_minutes,
    )
    return schemas.CampaignCreatedOut.model_validate(result)


@router.patch("/{campaign_id}/cancel", response_model=schemas.CancelCampaignOut)
def cancel_campaign(
    campaign_id: CampaignId,
    current_user_id: CurrentUserDep,
    lifecycle: LifecycleDep,
) -> schemas.CancelCampaignOut:
    count = lifecycle.cancel_campaign(campaign_id, current_user_id)
    return schemas.CancelCampaignOut(success=True, message=f"Cancelled {count} pending emails", count=count)


@router.get("/{campaign_id}/jobs", response_model=schemas.CampaignJobsOut)
def list_campaign_jobs(
    campaign_id: CampaignId,
    current_user_id: CurrentUserDep,
    db: DbDep,
    store: JobStoreDep,
) -> schemas.CampaignJobsOut:
    campaign = get_owned_campaign(db, campaign_id, current_user_id)
    views, stats = store.list_campaign_jobs(campaign.id)
    return schemas.CampaignJobsOut(
        campaign_id=campaign.id,
        name=store.campaign_name(campaign),
        jobs=[schemas.JobOut.model_validate(view) for view in views],
        stats=schemas.JobStatsOut.model_validate(stats),
    )


@router.get("/{campaign_id}/survey-stats", response_model=schemas.SurveyStatsOut)
def survey_stats(
    campaign_id: CampaignId,
    current_user_id: CurrentUserDep,
    tracking: TrackingDep,
) -> schemas.SurveyStatsOut:
    return schemas.SurveyStatsOut.model_validate(tracking.survey_stats(campaign_id, current_user_id))
