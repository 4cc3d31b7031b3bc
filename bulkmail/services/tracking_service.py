"""Attributes opens, clicks and survey answers to the job that sent them.

Every write here is best effort. Tracking must never break the rendering of
an email or a recipient's redirect, so storage errors are logged, counted and
swallowed, and the methods report success as a plain bool.
"""
from __future__ import annotations

import base64
import binascii
import datetime as dt
import logging
import re
from dataclasses import dataclass
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from bulkmail import metrics
from bulkmail.models.models import Campaign, Click, EmailJob, utcnow
from bulkmail.services.ownership import get_owned_campaign

logger = logging.getLogger(__name__)

# 1x1 transparent PNG
TRANSPARENT_PIXEL = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)

# Mail proxies and scanners that fetch images before a human opens the message
KNOWN_PREFETCH_AGENTS = (
    "googleimageproxy",
    "outlookproxy",
    "yahoomailproxy",
    "applemailproxy",
    "mailgun/tracking",
    "mailscanner",
)

MAX_CHOICE_LENGTH = 64

_TRACKING_ID_RE = re.compile(r"^[A-Za-z0-9_-]{8,64}$")

_TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"
_jinja_env = Environment(
    loader=FileSystemLoader(str(_TEMPLATE_DIR)),
    autoescape=select_autoescape(["html", "xml"]),
)

_CONFIRMATION_STYLES = {
    "yes": {"title": "Awesome!", "color": "#22c55e", "accent": "#16a34a", "symbol": "✓"},
    "maybe": {"title": "No problem!", "color": "#f97316", "accent": "#ea580c", "symbol": "?"},
    "no": {"title": "Understood!", "color": "#ef4444", "accent": "#dc2626", "symbol": "×"},
}


def is_valid_tracking_id(tracking_id: str | None) -> bool:
    return bool(tracking_id) and bool(_TRACKING_ID_RE.match(tracking_id))


def is_prefetch(user_agent: str | None) -> bool:
    if not user_agent:
        return False
    agent = user_agent.lower()
    return any(bot in agent for bot in KNOWN_PREFETCH_AGENTS)


def decode_destination(encoded: str | None) -> str | None:
    """Decode the base64 ``url`` query value of a tracked link.

    Accepts standard and URL-safe alphabets with or without padding. A ``+``
    that arrived unescaped in a query string reads back as a space, so spaces
    are restored first. Returns None if the value does not decode to text.
    """
    if not encoded:
        return None
    candidate = encoded.strip().replace(" ", "+").replace("-", "+").replace("_", "/")
    candidate += "=" * (-len(candidate) % 4)
    try:
        destination = base64.b64decode(candidate, validate=True).decode("utf-8")
    except (binascii.Error, ValueError):
        return None
    return destination or None


def render_confirmation_page(choice: str) -> str:
    style = _CONFIRMATION_STYLES.get(choice, _CONFIRMATION_STYLES["yes"])
    template = _jinja_env.get_template("survey_confirmation.html")
    return template.render(choice=choice, **style)


@dataclass(frozen=True)
class SurveyStats:
    yes: int
    maybe: int
    no: int
    total: int
    response_rate: float


@dataclass(frozen=True)
class OpenStatus:
    opened: bool = False
    opened_at: dt.datetime | None = None
    open_count: int = 0


class TrackingCorrelator:
    def __init__(self, db: Session):
        self.db = db

    def register_open(
        self,
        tracking_id: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
        now: dt.datetime | None = None,
    ) -> bool:
        """Count a pixel load. The first counted load sets ``opened_at``.

        Loads from known prefetching proxies are only counted once a real open
        has been seen. The increment happens in the UPDATE itself.
        """
        if not is_valid_tracking_id(tracking_id):
            return False
        prefetch = is_prefetch(user_agent)
        stmt = update(EmailJob).where(EmailJob.tracking_id == tracking_id)
        if prefetch:
            stmt = stmt.where(EmailJob.opened_at.is_not(None))
        stmt = stmt.values(
            open_count=EmailJob.open_count + 1,
            opened_at=func.coalesce(EmailJob.opened_at, now or utcnow()),
            ip_address=ip_address or "Unknown",
        ).execution_options(synchronize_session=False)
        try:
            result = self.db.execute(stmt)
            self.db.commit()
        except Exception:  # noqa: BLE001
            self.db.rollback()
            metrics.tracking_error("open")
            logger.exception("Open tracking failed for %s", tracking_id)
            return False

        if result.rowcount == 0:
            if prefetch:
                metrics.prefetch_skipped()
                logger.info("Prefetch detected for %s from %s", tracking_id, user_agent)
            return False
        metrics.open_recorded()
        return True

    def register_click(self, tracking_id: str, url: str) -> bool:
        """Append a Click for the job behind ``tracking_id``."""
        if not is_valid_tracking_id(tracking_id):
            return False
        try:
            job_id = self.db.scalar(select(EmailJob.id).where(EmailJob.tracking_id == tracking_id))
            if job_id is None:
                return False
            self.db.add(Click(email_job_id=job_id, url=url))
            self.db.commit()
        except Exception:  # noqa: BLE001
            self.db.rollback()
            metrics.tracking_error("click")
            logger.exception("Click tracking failed for %s", tracking_id)
            return False
        metrics.click_recorded()
        return True

    def register_survey_response(self, tracking_id: str, choice: str, now: dt.datetime | None = None) -> bool:
        """Store the recipient's answer. A later answer replaces an earlier one."""
        if not is_valid_tracking_id(tracking_id) or not choice or len(choice) > MAX_CHOICE_LENGTH:
            return False
        try:
            result = self.db.execute(
                update(EmailJob)
                .where(EmailJob.tracking_id == tracking_id)
                .values(survey_choice=choice, survey_clicked_at=now or utcnow())
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except Exception:  # noqa: BLE001
            self.db.rollback()
            metrics.tracking_error("survey")
            logger.exception("Survey tracking failed for %s", tracking_id)
            return False
        if result.rowcount == 0:
            return False
        metrics.survey_response(choice)
        return True

    def survey_stats(self, campaign_id: str, user_id: int) -> SurveyStats:
        campaign = get_owned_campaign(self.db, campaign_id, user_id)
        rows = self.db.execute(
            select(EmailJob.survey_choice, func.count(EmailJob.id))
            .where(EmailJob.campaign_id == campaign.id)
            .group_by(EmailJob.survey_choice)
        ).all()
        counts = {choice: count for choice, count in rows}
        total_jobs = sum(counts.values())
        responses = total_jobs - counts.get(None, 0)
        return SurveyStats(
            yes=counts.get("yes", 0),
            maybe=counts.get("maybe", 0),
            no=counts.get("no", 0),
            total=responses,
            response_rate=(responses / total_jobs * 100) if total_jobs else 0.0,
        )

    def tracking_status(self, user_id: int, tracking_ids: list[str]) -> dict[str, OpenStatus]:
        """Open state per tracking id, limited to jobs the user owns.

        Ids that are unknown, malformed or belong to someone else report as
        unopened.
        """
        wanted = list(dict.fromkeys(tracking_ids))
        valid = [tid for tid in wanted if is_valid_tracking_id(tid)]
        found: dict[str, OpenStatus] = {}
        if valid:
            rows = self.db.execute(
                select(EmailJob.tracking_id, EmailJob.opened_at, EmailJob.open_count)
                .join(Campaign, Campaign.id == EmailJob.campaign_id)
                .where(EmailJob.tracking_id.in_(valid), Campaign.user_id == user_id)
            ).all()
            found = {
                tracking_id: OpenStatus(
                    opened=opened_at is not None,
                    opened_at=opened_at,
                    open_count=open_count or 0,
                )
                for tracking_id, opened_at, open_count in rows
            }
        return {tid: found.get(tid, OpenStatus()) for tid in wanted}
