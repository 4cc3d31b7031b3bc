from __future__ import annotations

from fastapi import APIRouter, Body

from bulkmail.api.dependencies import CurrentUserDep, DeletionDep
from bulkmail.models import schemas

router = APIRouter(tags=["history"])


@router.delete("", response_model=schemas.HistoryDeleteOut)
def delete_history(
    current_user_id: CurrentUserDep,
    service: DeletionDep,
    payload: schemas.HistoryDeleteIn | None = Body(default=None),
) -> schemas.HistoryDeleteOut:
    """Delete the listed campaigns, or every direct send when no ids are given."""
    ids = payload.ids if payload else None
    count = service.delete_history(current_user_id, ids)
    return schemas.HistoryDeleteOut(success=True, count=count)
