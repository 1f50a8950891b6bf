# clubspace/api/routes/notifications.py
"""
Notification routes.

Endpoints:
    GET /notifications               -> One page of notifications
    GET /notifications/badge         -> Unread message and notification counters
    POST /notifications/read-all     -> Mark all notifications read
    POST /notifications/{id}/read    -> Mark one notification read
"""

from typing import List

from fastapi import APIRouter, Depends, Query, status

from ...core.exceptions import DomainException
from ...schemas.client import BadgeCounts
from ...schemas.responses import MarkedReadResponse
from ...schemas.social import Notification
from ...services.messaging_client import MessagingClient
from ...services.social_service import SocialService
from ..dependencies import get_client, get_social_service, unwrap

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=List[Notification])
async def list_notifications(
    page: int = Query(0, ge=0), social: SocialService = Depends(get_social_service)
) -> List[Notification]:
    try:
        return await social.notifications(page)
    except DomainException as e:
        raise e.to_http_exception()


@router.get("/badge", response_model=BadgeCounts)
async def get_badges(client: MessagingClient = Depends(get_client)) -> BadgeCounts:
    return unwrap(await client.refresh_badges())


@router.post("/read-all", response_model=MarkedReadResponse)
async def mark_all_read(client: MessagingClient = Depends(get_client)) -> MarkedReadResponse:
    return MarkedReadResponse(marked=unwrap(await client.mark_all_notifications_read()))


@router.post("/{notification_id}/read", status_code=status.HTTP_204_NO_CONTENT)
async def mark_read(
    notification_id: str, social: SocialService = Depends(get_social_service)
) -> None:
    try:
        await social.tracker.mark_notification_read(notification_id)
    except DomainException as e:
        raise e.to_http_exception()
