"""
Swap lifecycle service.

All status changes go through this module. The legal moves are
``ALLOWED_TRANSITIONS`` in ``schemas.swap``:

    pending  -> approved | denied | cancelled
    approved -> completed

Each transition is written as a conditional update on the expected current
status, so two actors racing on the same swap cannot overwrite each other:
the loser gets ``InvalidState``. Notifications and history rows are side
effects of a committed transition and never roll it back.
"""
import logging
from typing import Dict, List, Optional

from ..core.exceptions import (
    Forbidden,
    InvalidRequest,
    InvalidState,
    NotFound,
    require_actor,
)
from ..core.store import BookFilter, SwapStore, utcnow
from ..schemas.book import Book
from ..schemas.notification import NotificationType
from ..schemas.swap import (
    OFFER_ALREADY_PENDING,
    SwapAction,
    SwapDecision,
    SwapHistoryEntry,
    SwapRequest,
    SwapStats,
    SwapStatus,
    can_transition,
    history_rows,
)
from .notification_service import NotificationDispatcher

logger = logging.getLogger(__name__)

COMPLETION_ERRORS = {
    "not_found": (NotFound, "Swap not found"),
    "forbidden": (Forbidden, "Only the people in this swap can complete it"),
    "invalid_state": (InvalidState, "Only approved swaps can be completed"),
}


def completion_error(reason: Optional[str]):
    error_class, detail = COMPLETION_ERRORS.get(reason, (InvalidState, "Swap could not be completed"))
    return error_class(detail)


class SwapService:
    def __init__(self, store: SwapStore, notifications: Optional[NotificationDispatcher] = None):
        self.store = store
        self.notifications = notifications or NotificationDispatcher(store)

    # helpers

    async def _get_swap(self, swap_id: str) -> SwapRequest:
        swap = await self.store.get_swap_request(swap_id)
        if not swap:
            raise NotFound("Swap not found")
        return swap

    async def _get_book(self, book_id: str, label: str) -> Book:
        book = await self.store.get_book(book_id)
        if not book:
            raise NotFound(f"{label} not found")
        return book

    async def _transition(
        self,
        swap: SwapRequest,
        new_status: SwapStatus,
        extra_fields: Optional[Dict] = None,
    ) -> SwapRequest:
        if not can_transition(swap.status, new_status):
            raise InvalidState(
                f"Cannot change status from {swap.status.value} to {new_status.value}"
            )
        # The row comes back from the write itself; once it has committed,
        # nothing else may fail the transition.
        updated = await self.store.update_swap_status(swap.id, swap.status, new_status, extra_fields)
        if updated is None:
            logger.warning(f"Stale update on swap {swap.id}: expected {swap.status.value}")
            raise InvalidState("This swap was changed by someone else, refresh and try again")
        logger.info(f"Swap {swap.id}: {swap.status.value} -> {new_status.value}")
        return updated

    async def _record_history(self, rows: List[SwapHistoryEntry]) -> None:
        try:
            await self.store.insert_swap_history(rows)
        except Exception:
            logger.exception(f"Failed to write swap history for swap {rows[0].swap_id}")

    # lifecycle

    async def create_swap_request(
        self, requester_id: Optional[str], book_requested_id: str, book_offered_id: str
    ) -> SwapRequest:
        """
        Offer one of the requester's books in exchange for someone else's.

        Raises:
            AuthRequired: no requester.
            NotFound: either book does not exist.
            InvalidRequest: an ownership or availability rule failed, or the
                offered book is already part of another pending request.
        """
        requester_id = require_actor(requester_id)
        if book_requested_id == book_offered_id:
            raise InvalidRequest("You can't swap a book for itself")

        requested = await self._get_book(book_requested_id, "Requested book")
        offered = await self._get_book(book_offered_id, "Offered book")

        if offered.owner_id != requester_id:
            raise InvalidRequest("You can only offer books you own")
        if requested.owner_id == requester_id:
            raise InvalidRequest("You can't request your own book")
        if not offered.available_for_swap:
            raise InvalidRequest("The book you offered is not available for swap")
        if not requested.available_for_swap:
            raise InvalidRequest("The requested book is not available for swap")

        # Concurrent creates can both pass this check; the partial unique index
        # on book_swaps(book_offered_id) where status = 'pending' rejects the second.
        pending = await self.store.query_swap_requests_for_books(
            [book_offered_id], role="offered", statuses=[SwapStatus.PENDING]
        )
        if pending:
            raise InvalidRequest(OFFER_ALREADY_PENDING)

        swap = await self.store.insert_swap_request(
            {
                "requester_id": requester_id,
                "book_requested_id": book_requested_id,
                "book_offered_id": book_offered_id,
                "book_owner_id": requested.owner_id,
                "status": SwapStatus.PENDING,
            }
        )
        logger.info(f"User {requester_id} requested {requested.id} for {offered.id} (swap {swap.id})")

        await self._record_history(
            history_rows(swap, SwapAction.REQUESTED, SwapAction.RECEIVED_REQUEST, swap.created_at)
        )
        await self.notifications.emit(
            requested.owner_id,
            NotificationType.SWAP_REQUEST,
            "New Swap Request",
            f'Someone wants to swap "{offered.title}" for your book "{requested.title}"',
            swap.id,
        )
        return swap

    async def handle_swap_request(
        self, swap_id: str, reviewer_id: Optional[str], action: SwapDecision
    ) -> SwapRequest:
        """Approve or deny a pending request. Only the requested book's owner may decide."""
        reviewer_id = require_actor(reviewer_id)
        action = SwapDecision(action)
        swap = await self._get_swap(swap_id)
        if swap.book_owner_id != reviewer_id:
            raise Forbidden("Only the book owner can approve or deny this swap")
        if swap.status != SwapStatus.PENDING:
            raise InvalidState(f"This swap has already been {swap.status.value}")

        requested = await self._get_book(swap.book_requested_id, "Requested book")
        now = utcnow()

        if action == SwapDecision.APPROVE:
            swap = await self._transition(swap, SwapStatus.APPROVED, {"approved_at": now})
            history_action = SwapAction.APPROVED
            notification = (
                NotificationType.SWAP_APPROVED,
                "Swap Request Approved!",
                f'Your swap request for "{requested.title}" has been approved.',
            )
        else:
            swap = await self._transition(swap, SwapStatus.DENIED)
            history_action = SwapAction.DENIED
            notification = (
                NotificationType.SWAP_DENIED,
                "Swap Request Denied",
                f'Your swap request for "{requested.title}" has been denied.',
            )

        await self._record_history(history_rows(swap, history_action, history_action, now))
        await self.notifications.emit(swap.requester_id, *notification, swap.id)
        return swap

    async def cancel_swap_request(
        self, swap_id: str, requester_id: Optional[str], reason: Optional[str] = ""
    ) -> SwapRequest:
        """
        Withdraw a pending request. Availability of the offered book is left
        as it is; the owner toggles it separately.
        """
        requester_id = require_actor(requester_id)
        swap = await self._get_swap(swap_id)
        if swap.requester_id != requester_id:
            raise Forbidden("Only the requester can cancel this swap")
        if swap.status != SwapStatus.PENDING:
            raise InvalidState(f"Only pending swaps can be cancelled, this one is {swap.status.value}")

        requested = await self._get_book(swap.book_requested_id, "Requested book")
        now = utcnow()
        swap = await self._transition(
            swap,
            SwapStatus.CANCELLED,
            {"cancelled_at": now, "cancel_reason": (reason or "").strip() or None},
        )

        await self._record_history(history_rows(swap, SwapAction.CANCELLED, SwapAction.CANCELLED, now))
        message = f'The swap request for "{requested.title}" was cancelled.'
        if swap.cancel_reason:
            message += f" Reason: {swap.cancel_reason}"
        await self.notifications.emit(
            swap.book_owner_id,
            NotificationType.SWAP_CANCELLED,
            "Swap Request Cancelled",
            message,
            swap.id,
        )
        return swap

    async def complete_swap(self, swap_id: str, actor_id: Optional[str]) -> SwapRequest:
        """
        Mark an approved swap as completed.

        Either participant may complete it. The status change and both history
        rows are written by the store's single atomic completion routine.
        """
        actor_id = require_actor(actor_id)
        swap = await self._get_swap(swap_id)
        if not swap.is_participant(actor_id):
            raise completion_error("forbidden")
        if swap.status != SwapStatus.APPROVED:
            raise InvalidState(f"Only approved swaps can be completed, this one is {swap.status.value}")

        result = await self.store.call_atomic_complete_swap(swap_id, actor_id)
        if not result.ok:
            logger.warning(f"complete_swap rejected for swap {swap_id}: {result.reason}")
            raise completion_error(result.reason)

        completed = result.swap or swap.model_copy(
            update={"status": SwapStatus.COMPLETED, "completed_at": utcnow()}
        )
        logger.info(f"Swap {swap_id} completed by {actor_id}")
        await self.notifications.emit(
            swap.partner_of(actor_id),
            NotificationType.SWAP_COMPLETED,
            "Swap Completed",
            "Your book swap has been marked as completed.",
            swap_id,
        )
        return completed

    # queries

    async def get_swap_request(self, swap_id: str, actor_id: Optional[str]) -> SwapRequest:
        actor_id = require_actor(actor_id)
        swap = await self._get_swap(swap_id)
        if not swap.is_participant(actor_id):
            raise Forbidden("You don't have permission to view this swap")
        return swap

    async def list_user_swaps(
        self,
        user_id: Optional[str],
        status: Optional[SwapStatus] = None,
        role: Optional[str] = None,
    ) -> List[SwapRequest]:
        """Outgoing (role="requester") and incoming (role="owner") requests, newest first."""
        user_id = require_actor(user_id)
        statuses = [status] if status else None
        swaps: Dict[str, SwapRequest] = {}

        if role in (None, "requester"):
            for swap in await self.store.query_swap_requests_by_requester(user_id, statuses):
                swaps[swap.id] = swap
        if role in (None, "owner"):
            books = await self.store.query_books(BookFilter(owner_id=user_id))
            incoming = await self.store.query_swap_requests_for_books(
                [b.id for b in books], role="requested", statuses=statuses
            )
            for swap in incoming:
                swaps[swap.id] = swap

        return sorted(swaps.values(), key=lambda s: s.created_at, reverse=True)

    async def get_swap_history(self, user_id: Optional[str]) -> List[SwapHistoryEntry]:
        return await self.store.query_swap_history(require_actor(user_id))

    async def get_swap_stats(self, user_id: Optional[str]) -> SwapStats:
        swaps = await self.list_user_swaps(user_id)

        def count(status: SwapStatus) -> int:
            return sum(1 for s in swaps if s.status == status)

        return SwapStats(
            total_swaps=len(swaps),
            completed_swaps=count(SwapStatus.COMPLETED),
            pending_requests=count(SwapStatus.PENDING),
            active_swaps=count(SwapStatus.APPROVED),
            cancelled_swaps=count(SwapStatus.CANCELLED),
        )
