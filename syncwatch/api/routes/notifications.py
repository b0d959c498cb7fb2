from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from syncwatch.api.dependencies import get_notification_feed
from syncwatch.api.schemas.datasets import NotificationListResponse, NotificationResponse
from syncwatch.monitor.notifications import NotificationFeed
from syncwatch.monitor.service import notification_to_dict

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    limit: int = Query(default=50, ge=1, le=500),
    feed: NotificationFeed = Depends(get_notification_feed),
) -> NotificationListResponse:
    return NotificationListResponse(
        items=[NotificationResponse.model_validate(notification_to_dict(item)) for item in feed.recent(limit)]
    )
