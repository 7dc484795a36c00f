from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from enum import Enum

class NotificationType(str, Enum):
    SWAP_REQUEST = "swap_request"
    SWAP_APPROVED = "swap_approved"
    SWAP_DENIED = "swap_denied"
    SWAP_CANCELLED = "swap_cancelled"
    SWAP_COMPLETED = "swap_completed"

class NotificationBase(BaseModel):
    user_id: str
    type: NotificationType
    title: str = Field(..., max_length=100)
    message: str = Field(..., max_length=500)
    related_swap_id: Optional[str] = None  # ID of the swap that triggered it

class Notification(NotificationBase):
    id: str
    read_at: Optional[datetime] = None
    created_at: datetime

    @property
    def is_read(self) -> bool:
        return self.read_at is not None
