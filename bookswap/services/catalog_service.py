"""
Book catalog: what a given viewer can browse and request, plus the
owner-side book operations (listing, edits, availability toggle).
"""
import logging
from collections import defaultdict
from typing import Dict, List, Optional, Sequence

from ..core.exceptions import Forbidden, NotFound
from ..core.store import BookFilter, SwapStore
from ..schemas.book import Book, BookCreate, BookUpdate, BookWithSwapInfo, SwapButtonState
from ..schemas.swap import SwapRequest, SwapStatus

logger = logging.getLogger(__name__)

STATUS_TO_BUTTON_STATE = {
    SwapStatus.PENDING: SwapButtonState.SWAP_REQUESTED,
    SwapStatus.APPROVED: SwapButtonState.SWAP_APPROVED,
    SwapStatus.DENIED: SwapButtonState.SWAP_DENIED,
    SwapStatus.COMPLETED: SwapButtonState.SWAP_COMPLETED,
    # a cancelled request may be made again
    SwapStatus.CANCELLED: SwapButtonState.CAN_REQUEST,
}


def latest_request(requests: Sequence[SwapRequest]) -> Optional[SwapRequest]:
    if not requests:
        return None
    return max(requests, key=lambda r: r.created_at)


def derive_swap_button_state(book: Book, viewer_requests: Sequence[SwapRequest]) -> SwapButtonState:
    """
    Compute the swap action a viewer sees on a book card.

    ``viewer_requests`` are the viewer's own requests against ``book``; the
    most recent one decides the state.
    """
    if not book.available_for_swap:
        return SwapButtonState.NOT_AVAILABLE
    request = latest_request(viewer_requests)
    if request is None:
        return SwapButtonState.CAN_REQUEST
    return STATUS_TO_BUTTON_STATE[request.status]


def is_visible_to_viewer(viewer_requests: Sequence[SwapRequest]) -> bool:
    """A book the viewer already swapped for is no longer offered to them."""
    return not any(r.status == SwapStatus.COMPLETED for r in viewer_requests)


class CatalogService:
    def __init__(self, store: SwapStore):
        self.store = store

    async def list_available_books(
        self,
        viewer_id: Optional[str] = None,
        genre: Optional[str] = None,
        condition: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[BookWithSwapInfo]:
        books = await self.store.query_books(
            BookFilter(
                available_for_swap=True,
                exclude_owner_id=viewer_id,
                genre=genre,
                condition=condition,
                search=search,
            )
        )
        if not books:
            return []

        by_book: Dict[str, List[SwapRequest]] = defaultdict(list)
        if viewer_id:
            requests = await self.store.query_swap_requests_for_books([b.id for b in books])
            for request in requests:
                if request.requester_id == viewer_id:
                    by_book[request.book_requested_id].append(request)

        results = []
        for book in books:
            viewer_requests = by_book.get(book.id, [])
            if not is_visible_to_viewer(viewer_requests):
                continue
            latest = latest_request(viewer_requests)
            results.append(
                BookWithSwapInfo(
                    **book.model_dump(),
                    swap_state=derive_swap_button_state(book, viewer_requests),
                    viewer_request_id=latest.id if latest else None,
                    viewer_request_status=latest.status.value if latest else None,
                )
            )
        return results

    async def get_book(self, book_id: str) -> Book:
        book = await self.store.get_book(book_id)
        if not book:
            raise NotFound("Book not found")
        return book

    async def add_book(self, owner_id: str, book: BookCreate) -> Book:
        created = await self.store.insert_book({**book.model_dump(), "owner_id": owner_id})
        logger.info(f"User {owner_id} listed book {created.id} ({created.title})")
        return created

    async def _owned_book(self, book_id: str, owner_id: str) -> Book:
        book = await self.get_book(book_id)
        if book.owner_id != owner_id:
            raise Forbidden("You don't own this book")
        return book

    async def update_book(self, book_id: str, owner_id: str, changes: BookUpdate) -> Book:
        await self._owned_book(book_id, owner_id)
        fields = changes.model_dump(exclude_unset=True)
        if not fields:
            return await self.get_book(book_id)
        updated = await self.store.update_book(book_id, fields)
        if not updated:
            raise NotFound("Book not found")
        return updated

    async def set_availability(self, book_id: str, owner_id: str, available: bool) -> Book:
        await self._owned_book(book_id, owner_id)
        updated = await self.store.update_book(book_id, {"available_for_swap": available})
        if not updated:
            raise NotFound("Book not found")
        logger.info(f"Book {book_id} available_for_swap set to {available}")
        return updated

    async def list_owner_books(self, owner_id: str) -> List[Book]:
        return await self.store.query_books(BookFilter(owner_id=owner_id))

    async def list_offerable_books(self, owner_id: str) -> List[Book]:
        """Owner's available books that are not already offered in a pending swap."""
        books = await self.store.query_books(BookFilter(owner_id=owner_id, available_for_swap=True))
        if not books:
            return []
        pending = await self.store.query_swap_requests_for_books(
            [b.id for b in books], role="offered", statuses=[SwapStatus.PENDING]
        )
        offered = {r.book_offered_id for r in pending}
        return [b for b in books if b.id not in offered]
