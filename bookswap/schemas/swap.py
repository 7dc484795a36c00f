from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from enum import Enum

class SwapStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

# The only legal status moves. Anything not listed here is rejected.
ALLOWED_TRANSITIONS = {
    SwapStatus.PENDING: {SwapStatus.APPROVED, SwapStatus.DENIED, SwapStatus.CANCELLED},
    SwapStatus.APPROVED: {SwapStatus.COMPLETED},
    SwapStatus.DENIED: set(),
    SwapStatus.CANCELLED: set(),
    SwapStatus.COMPLETED: set(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)

def can_transition(current: SwapStatus, new: SwapStatus) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, set())

class SwapAction(str, Enum):
    REQUESTED = "requested"
    RECEIVED_REQUEST = "received_request"
    APPROVED = "approved"
    DENIED = "denied"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

OFFER_ALREADY_PENDING = "The book you offered is already part of a pending swap request"

class SwapDecision(str, Enum):
    APPROVE = "approve"
    DENY = "deny"

class SwapCreate(BaseModel):
    book_requested_id: str
    book_offered_id: str

class SwapDecisionRequest(BaseModel):
    action: SwapDecision

class SwapCancellation(BaseModel):
    cancel_reason: str = Field("", max_length=500)

class SwapRequest(BaseModel):
    id: str
    requester_id: str
    book_requested_id: str
    book_offered_id: str
    book_owner_id: str
    status: SwapStatus = SwapStatus.PENDING
    created_at: datetime
    updated_at: datetime
    approved_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    completed_at: Optional[datetime] = None

    def is_participant(self, user_id: str) -> bool:
        return user_id in (self.requester_id, self.book_owner_id)

    def partner_of(self, user_id: str) -> str:
        return self.book_owner_id if user_id == self.requester_id else self.requester_id

class SwapHistoryEntry(BaseModel):
    swap_id: str
    user_id: str
    partner_id: str
    book_given_id: str
    book_received_id: str
    action: SwapAction
    timestamp: datetime

class CompleteSwapResult(BaseModel):
    """Outcome of the atomic completion routine."""
    ok: bool
    reason: Optional[str] = None  # not_found | forbidden | invalid_state
    swap: Optional[SwapRequest] = None

class SwapStats(BaseModel):
    total_swaps: int = 0
    completed_swaps: int = 0
    pending_requests: int = 0
    active_swaps: int = 0
    cancelled_swaps: int = 0

def history_rows(
    swap: SwapRequest,
    requester_action: SwapAction,
    owner_action: SwapAction,
    timestamp: datetime,
) -> List[SwapHistoryEntry]:
    """One row per participant; book_given_id is the book that user hands over."""
    return [
        SwapHistoryEntry(
            swap_id=swap.id,
            user_id=swap.requester_id,
            partner_id=swap.book_owner_id,
            book_given_id=swap.book_offered_id,
            book_received_id=swap.book_requested_id,
            action=requester_action,
            timestamp=timestamp,
        ),
        SwapHistoryEntry(
            swap_id=swap.id,
            user_id=swap.book_owner_id,
            partner_id=swap.requester_id,
            book_given_id=swap.book_requested_id,
            book_received_id=swap.book_offered_id,
            action=owner_action,
            timestamp=timestamp,
        ),
    ]
