"""
History and account deletion.

Rows are removed children first, in one transaction per call:
Click -> EmailJob -> CampaignAttachment -> Campaign (-> UserMonthlyUsage -> User).
An audit entry is written after the commit.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from bulkmail.core.audit import log_audit_event
from bulkmail.core.exceptions import UserNotFoundError
from bulkmail.models.models import (
    DIRECT_HOST,
    Campaign,
    CampaignAttachment,
    Click,
    EmailJob,
    User,
    UserMonthlyUsage,
)
from bulkmail.services.ownership import validate_resource_id

logger = logging.getLogger(__name__)


class AccountDeletionService:
    """Service for removing campaign history and whole accounts."""

    def __init__(self, db: Session):
        self.db = db

    def _delete_campaigns(self, campaign_ids: Sequence[str]) -> dict[str, int]:
        if not campaign_ids:
            return {"clicks": 0, "email_jobs": 0, "attachments": 0, "campaigns": 0}
        job_ids = select(EmailJob.id).where(EmailJob.campaign_id.in_(campaign_ids))
        counts = {}
        counts["clicks"] = self.db.execute(
            delete(Click).where(Click.email_job_id.in_(job_ids)).execution_options(synchronize_session=False)
        ).rowcount
        counts["email_jobs"] = self.db.execute(
            delete(EmailJob).where(EmailJob.campaign_id.in_(campaign_ids)).execution_options(synchronize_session=False)
        ).rowcount
        counts["attachments"] = self.db.execute(
            delete(CampaignAttachment)
            .where(CampaignAttachment.campaign_id.in_(campaign_ids))
            .execution_options(synchronize_session=False)
        ).rowcount
        counts["campaigns"] = self.db.execute(
            delete(Campaign).where(Campaign.id.in_(campaign_ids)).execution_options(synchronize_session=False)
        ).rowcount
        return counts

    def delete_history(self, user_id: int, campaign_ids: Sequence[str] | None = None) -> int:
        """Delete the given campaigns, or all DIRECT sends when no ids are given.

        Ids that do not belong to ``user_id`` are ignored; malformed ids raise
        ``InvalidIdentifierError`` before anything is read. Returns the number
        of campaigns removed.
        """
        for campaign_id in campaign_ids or ():
            validate_resource_id("campaign_id", campaign_id)
        stmt = select(Campaign.id).where(Campaign.user_id == user_id)
        if campaign_ids:
            stmt = stmt.where(Campaign.id.in_(list(campaign_ids)))
        else:
            stmt = stmt.where(Campaign.host == DIRECT_HOST)
        owned_ids = list(self.db.scalars(stmt).all())

        try:
            counts = self._delete_campaigns(owned_ids)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("Failed to clear history for user %s", user_id)
            raise

        log_audit_event("history.deleted", user_id=user_id, summary=counts)
        return counts["campaigns"]

    def delete_account(self, user_id: int) -> dict:
        """
        Permanently delete a user account and all associated data.

        Returns:
            dict with deletion summary

        Raises:
            UserNotFoundError: If user not found
        """
        user = self.db.get(User, user_id)
        if user is None:
            raise UserNotFoundError(user_id)

        user_info = {
            "id": user.id,
            "plan": user.plan.value,
            "created_at": user.created_at.isoformat() if user.created_at else None,
        }

        try:
            campaign_ids = list(self.db.scalars(select(Campaign.id).where(Campaign.user_id == user_id)).all())
            deleted_items = self._delete_campaigns(campaign_ids)
            deleted_items["monthly_usage"] = self.db.execute(
                delete(UserMonthlyUsage)
                .where(UserMonthlyUsage.user_id == user_id)
                .execution_options(synchronize_session=False)
            ).rowcount
            self.db.delete(user)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("Account deletion failed for user %s", user_id)
            raise

        log_audit_event(
            action="account.deleted",
            user_id=user_id,
            status="success",
            deleted_user=user_info,
            summary=deleted_items,
        )
        logger.info("Account %s deleted: %s", user_id, deleted_items)
        return {"user_id": user_id, "deleted_items": deleted_items}
