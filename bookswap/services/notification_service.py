"""
Notification dispatcher.

Lifecycle transitions call ``emit`` after their status change has been
committed. A failure here is logged and dropped: it must never undo or block
the transition that triggered it.
"""
import logging
from typing import List, Optional

from ..core.exceptions import NotFound
from ..core.store import SwapStore
from ..schemas.notification import Notification, NotificationType

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    def __init__(self, store: SwapStore):
        self.store = store

    async def emit(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        related_swap_id: Optional[str] = None,
    ) -> None:
        try:
            await self.store.insert_notification(
                {
                    "user_id": user_id,
                    "type": type,
                    "title": title,
                    "message": message,
                    "related_swap_id": related_swap_id,
                }
            )
            logger.info(f"Sent {type.value} notification to {user_id} for swap {related_swap_id}")
        except Exception:
            logger.exception(f"Failed to send {type.value} notification to {user_id} for swap {related_swap_id}")

    async def list_notifications(
        self, user_id: str, unread_only: bool = False, limit: int = 20
    ) -> List[Notification]:
        return await self.store.query_notifications(user_id, unread_only=unread_only, limit=limit)

    async def mark_read(self, notification_id: str, user_id: str) -> Notification:
        notification = await self.store.mark_notification_read(notification_id, user_id)
        if not notification:
            raise NotFound("Notification not found")
        return notification
