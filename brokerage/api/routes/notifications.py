"""GET /api/v1/notifications -- stored inbox of the calling company or driver."""

from fastapi import APIRouter, Depends, Request

from brokerage.api.dependencies import current_actor, get_inbox
from brokerage.api.middleware import limiter
from brokerage.api.schemas import NotificationResponse
from brokerage.config import settings
from brokerage.domain.entities import Actor
from brokerage.services.notifications import NotificationInbox

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationResponse], summary="List notifications")
@limiter.limit(settings.rate_limit)
async def list_notifications(
    request: Request,
    actor: Actor = Depends(current_actor),
    inbox: NotificationInbox = Depends(get_inbox),
):
    return await inbox.list_for(actor)
