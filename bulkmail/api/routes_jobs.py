from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Path

from bulkmail.api.dependencies import RESOURCE_ID_PATTERN, CurrentUserDep, LifecycleDep
from bulkmail.models import schemas

router = APIRouter(tags=["jobs"])


@router.patch("/{job_id}/cancel", response_model=schemas.CancelJobOut)
def cancel_job(
    job_id: Annotated[str, Path(pattern=RESOURCE_ID_PATTERN)],
    current_user_id: CurrentUserDep,
    lifecycle: LifecycleDep,
) -> schemas.CancelJobOut:
    """Cancel one pending job. Cancelling a finished job is reported, not raised."""
    result = lifecycle.cancel_job(job_id, current_user_id)
    if result.success:
        return schemas.CancelJobOut(success=True, message="Job cancelled", status=result.status)
    return schemas.CancelJobOut(success=False, message="Job already finished", status=result.status)
