from fastapi import APIRouter, Depends, Path, Query
from typing import List

from ....schemas.notification import Notification
from ....services.notification_service import NotificationDispatcher
from ..dependencies import get_notification_dispatcher
from .users import get_current_user

router = APIRouter(prefix="/notifications", tags=["notifications"])

@router.get("/", response_model=List[Notification])
async def get_notifications(
    unread_only: bool = False,
    limit: int = Query(20, ge=1, le=100),
    current_user: str = Depends(get_current_user),
    notifications: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """
    Get the current user's notifications, newest first.
    """
    return await notifications.list_notifications(current_user, unread_only=unread_only, limit=limit)

@router.patch("/{notification_id}/read", response_model=Notification)
async def mark_notification_read(
    notification_id: str = Path(...),
    current_user: str = Depends(get_current_user),
    notifications: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """
    Mark one of the current user's notifications as read.
    """
    return await notifications.mark_read(notification_id, current_user)
