"""Public tracking endpoints embedded in sent emails.

None of these may fail from the recipient's point of view: the pixel is always
served, the click always redirects and the survey always renders a page, so
they carry no rate limit. Only the status lookup requires a signed-in owner.
"""
import logging
from typing import Annotated

from fastapi import APIRouter, Header, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response

from bulkmail.api.dependencies import CurrentUserDep, TrackingDep, client_ip
from bulkmail.core.config import settings
from bulkmail.models import schemas
from bulkmail.services.tracking_service import (
    TRANSPARENT_PIXEL,
    decode_destination,
    render_confirmation_page,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["tracking"])

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


@router.get("/open/{tracking_id}/pixel.png")
def track_open(
    request: Request,
    tracking_id: str,
    tracking: TrackingDep,
    user_agent: Annotated[str | None, Header()] = None,
) -> Response:
    try:
        tracking.register_open(tracking_id, ip_address=client_ip(request), user_agent=user_agent)
    except Exception:  # noqa: BLE001
        logger.exception("Pixel handler error for %s", tracking_id)
    return Response(content=TRANSPARENT_PIXEL, media_type="image/png", headers=NO_CACHE_HEADERS)


@router.get("/click/{tracking_id}")
def track_click(
    tracking_id: str,
    tracking: TrackingDep,
    url: Annotated[str | None, Query()] = None,
) -> RedirectResponse:
    destination = decode_destination(url)
    if destination is None:
        return RedirectResponse(settings.APP_URL.rstrip("/") + "/", status_code=302)
    try:
        tracking.register_click(tracking_id, destination)
    except Exception:  # noqa: BLE001
        logger.exception("Click handler error for %s", tracking_id)
    return RedirectResponse(destination, status_code=302)


@router.get("/survey/{tracking_id}/{choice}", response_class=HTMLResponse)
def track_survey(tracking_id: str, choice: str, tracking: TrackingDep) -> HTMLResponse:
    choice = choice.strip().lower()
    try:
        tracking.register_survey_response(tracking_id, choice)
    except Exception:  # noqa: BLE001
        logger.exception("Survey handler error for %s", tracking_id)
    return HTMLResponse(render_confirmation_page(choice), headers=NO_CACHE_HEADERS)


@router.get("/status", response_model=dict[str, schemas.TrackingStatusOut])
def tracking_status(
    current_user_id: CurrentUserDep,
    tracking: TrackingDep,
    ids: Annotated[str, Query(min_length=1)],
) -> dict[str, schemas.TrackingStatusOut]:
    """Open state for a comma-separated list of tracking ids."""
    tracking_ids = [tid.strip() for tid in ids.split(",") if tid.strip()]
    statuses = tracking.tracking_status(current_user_id, tracking_ids)
    return {tid: schemas.TrackingStatusOut.model_validate(status) for tid, status in statuses.items()}


@router.post("/status", response_model=dict[str, schemas.TrackingStatusOut])
def tracking_status_batch(
    payload: schemas.TrackingStatusIn,
    current_user_id: CurrentUserDep,
    tracking: TrackingDep,
) -> dict[str, schemas.TrackingStatusOut]:
    statuses = tracking.tracking_status(current_user_id, payload.ids)
    return {tid: schemas.TrackingStatusOut.model_validate(status) for tid, status in statuses.items()}
