import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from fastapi.responses import RedirectResponse, Response
from itsdangerous import BadSignature, SignatureExpired

from channelflow.api.deps import get_services
from channelflow.bootstrap import Services
from channelflow.models.event import Event
from channelflow.services.tracking import CLICK_TRIGGER, OPEN_TRIGGER

logger = logging.getLogger(__name__)
router = APIRouter()

# 1x1 transparent GIF pixel
TRACKING_PIXEL = (
    b'\x47\x49\x46\x38\x39\x61\x01\x00\x01\x00\x80\x00\x00\xff\xff\xff'
    b'\x00\x00\x00\x21\xf9\x04\x01\x00\x00\x00\x00\x2c\x00\x00\x00\x00'
    b'\x01\x00\x01\x00\x00\x02\x02\x44\x01\x00\x3b'
)


def _pixel() -> Response:
    return Response(content=TRACKING_PIXEL, media_type="image/gif")


def _decode(services: Services, token: str, expected_trigger: str) -> Optional[dict]:
    try:
        data = services.tracking.load_token(token)
    except SignatureExpired:
        logger.warning("[TRACKING] Expired tracking token received")
        return None
    except BadSignature:
        logger.warning("[TRACKING] Invalid tracking token received")
        return None
    if data.get("trigger_id") != expected_trigger or not data.get("lead_id"):
        logger.warning(f"[TRACKING] Token for {data.get('trigger_id')} used on the {expected_trigger} endpoint")
        return None
    return data


async def _ingest(services: Services, event: Event) -> None:
    try:
        await services.funnels.ingest(event)
    except Exception as e:
        # tracking must never break the recipient's pixel or redirect
        logger.error(f"[TRACKING] Failed to process {event.trigger_id} for lead {event.lead_id}: {e}", exc_info=True)


@router.get("/track/open")
async def track_email_open(
    background_tasks: BackgroundTasks,
    token: str = Query(..., description="Signed tracking token"),
    services: Services = Depends(get_services),
):
    """Records an email open and always answers with the tracking pixel."""
    data = _decode(services, token, OPEN_TRIGGER)
    if data is None:
        return _pixel()
    logger.info(f"[TRACKING] Email open tracked for lead {data['lead_id']}")
    event = Event(lead_id=data["lead_id"], trigger_id=OPEN_TRIGGER, payload=data)
    background_tasks.add_task(_ingest, services, event)
    return _pixel()


@router.get("/track/click")
async def track_link_click(
    background_tasks: BackgroundTasks,
    url: str = Query(..., description="Destination URL"),
    token: str = Query(..., description="Signed tracking token"),
    services: Services = Depends(get_services),
):
    """Records a link click and redirects to the destination."""
    data = _decode(services, token, CLICK_TRIGGER)
    if data is not None:
        logger.info(f"[TRACKING] Link click tracked for lead {data['lead_id']}: {url}")
        event = Event(lead_id=data["lead_id"], trigger_id=CLICK_TRIGGER, payload={**data, "url": url})
        background_tasks.add_task(_ingest, services, event)
    return RedirectResponse(url=url, status_code=302)
