from typing import Annotated

from fastapi import APIRouter, Query, Request

from bulkmail.api.dependencies import CurrentUserDep, DeletionDep, QuotaDep, client_ip
from bulkmail.api.rate_limit import RATE_LIMITS, limiter
from bulkmail.models import schemas

router = APIRouter(tags=["user"])


@router.get("/limit", response_model=schemas.UsageStatusOut)
def get_limit(
    request: Request,
    current_user_id: CurrentUserDep,
    quota: QuotaDep,
    smtp_identity: Annotated[str | None, Query()] = None,
) -> schemas.UsageStatusOut:
    """Current month's usage across the user's correlated identities.

    ``limit`` and ``remaining`` are null with ``unlimited: true`` for
    unlimited plans.
    """
    status = quota.check_usage(current_user_id, ip_address=client_ip(request), smtp_identity=smtp_identity)
    return schemas.UsageStatusOut.from_status(status)


@router.delete("/account", response_model=schemas.AccountDeletionOut)
@limiter.limit(RATE_LIMITS["account_delete"])
def delete_account(
    request: Request,
    current_user_id: CurrentUserDep,
    service: DeletionDep,
) -> schemas.AccountDeletionOut:
    summary = service.delete_account(current_user_id)
    return schemas.AccountDeletionOut(
        success=True,
        message="Account and all associated data deleted",
        deleted_items=summary["deleted_items"],
    )
