"""In-process SwapStore used by the test suite and STORE_BACKEND=memory."""
import asyncio
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional

from .exceptions import InvalidRequest
from .store import BookFilter, SwapStore, bounded, new_id, utcnow
from ..schemas.book import Book
from ..schemas.notification import Notification
from ..schemas.review import Review
from ..schemas.swap import (
    OFFER_ALREADY_PENDING,
    CompleteSwapResult,
    SwapAction,
    SwapHistoryEntry,
    SwapRequest,
    SwapStatus,
    history_rows,
)


class InMemoryStore(SwapStore):
    """
    Dictionary-backed store.

    Every call yields to the event loop (after ``latency`` seconds) so that
    concurrent callers interleave the way they would against a remote
    database. Mutations take a single lock, which gives the conditional
    update and the completion routine their atomicity.
    """

    def __init__(self, timeout: float = 10.0, latency: float = 0.0):
        self.timeout = timeout
        self.latency = latency
        self._lock = asyncio.Lock()
        self._last_timestamp = None
        self.books: Dict[str, Book] = {}
        self.swaps: Dict[str, SwapRequest] = {}
        self.history: List[SwapHistoryEntry] = []
        self.notifications: Dict[str, Notification] = {}
        self.reviews: Dict[str, Review] = {}

    async def _tick(self):
        await asyncio.sleep(self.latency)

    def _now(self):
        # strictly increasing, so "newest first" ordering is never a tie
        now = utcnow()
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now

    # books

    @bounded("get_book")
    async def get_book(self, book_id: str) -> Optional[Book]:
        await self._tick()
        book = self.books.get(book_id)
        return book.model_copy(deep=True) if book else None

    @bounded("query_books")
    async def query_books(self, book_filter: BookFilter) -> List[Book]:
        await self._tick()
        books = [b.model_copy(deep=True) for b in self.books.values() if book_filter.matches(b)]
        return sorted(books, key=lambda b: b.created_at, reverse=True)

    @bounded("insert_book")
    async def insert_book(self, fields: Dict[str, Any]) -> Book:
        await self._tick()
        now = self._now()
        data = {"id": new_id(), "created_at": now, "updated_at": now, **fields}
        book = Book(**data)
        async with self._lock:
            self.books[book.id] = book
        return book.model_copy(deep=True)

    @bounded("update_book")
    async def update_book(self, book_id: str, fields: Dict[str, Any]) -> Optional[Book]:
        await self._tick()
        async with self._lock:
            book = self.books.get(book_id)
            if not book:
                return None
            updated = book.model_copy(update={**fields, "updated_at": self._now()})
            self.books[book_id] = updated
            return updated.model_copy(deep=True)

    # swap requests

    @bounded("get_swap_request")
    async def get_swap_request(self, swap_id: str) -> Optional[SwapRequest]:
        await self._tick()
        swap = self.swaps.get(swap_id)
        return swap.model_copy(deep=True) if swap else None

    @bounded("insert_swap_request")
    async def insert_swap_request(self, fields: Dict[str, Any]) -> SwapRequest:
        await self._tick()
        now = self._now()
        swap = SwapRequest(**{"id": new_id(), "created_at": now, "updated_at": now, **fields})
        async with self._lock:
            # same rule as the partial unique index on book_swaps
            if swap.status == SwapStatus.PENDING and any(
                s.book_offered_id == swap.book_offered_id and s.status == SwapStatus.PENDING
                for s in self.swaps.values()
            ):
                raise InvalidRequest(OFFER_ALREADY_PENDING)
            self.swaps[swap.id] = swap
        return swap.model_copy(deep=True)

    @bounded("update_swap_status")
    async def update_swap_status(
        self,
        swap_id: str,
        expected_status: SwapStatus,
        new_status: SwapStatus,
        extra_fields: Optional[Dict[str, Any]] = None,
    ) -> Optional[SwapRequest]:
        await self._tick()
        async with self._lock:
            swap = self.swaps.get(swap_id)
            if not swap or swap.status != expected_status:
                return None
            update = {**(extra_fields or {}), "status": new_status, "updated_at": self._now()}
            updated = swap.model_copy(update=update)
            self.swaps[swap_id] = updated
            return updated.model_copy(deep=True)

    @bounded("query_swap_requests_for_books")
    async def query_swap_requests_for_books(
        self,
        book_ids: Iterable[str],
        role: str = "requested",
        statuses: Optional[Iterable[SwapStatus]] = None,
    ) -> List[SwapRequest]:
        await self._tick()
        ids = set(book_ids)
        wanted = set(statuses) if statuses is not None else None
        results = []
        for swap in self.swaps.values():
            if role == "requested":
                hit = swap.book_requested_id in ids
            elif role == "offered":
                hit = swap.book_offered_id in ids
            else:
                hit = swap.book_requested_id in ids or swap.book_offered_id in ids
            if hit and (wanted is None or swap.status in wanted):
                results.append(swap.model_copy(deep=True))
        return sorted(results, key=lambda s: s.created_at, reverse=True)

    @bounded("query_swap_requests_by_requester")
    async def query_swap_requests_by_requester(
        self, requester_id: str, statuses: Optional[Iterable[SwapStatus]] = None
    ) -> List[SwapRequest]:
        await self._tick()
        wanted = set(statuses) if statuses is not None else None
        results = [
            s.model_copy(deep=True)
            for s in self.swaps.values()
            if s.requester_id == requester_id and (wanted is None or s.status in wanted)
        ]
        return sorted(results, key=lambda s: s.created_at, reverse=True)

    # history

    @bounded("insert_swap_history")
    async def insert_swap_history(self, rows: List[SwapHistoryEntry]) -> None:
        await self._tick()
        async with self._lock:
            self.history.extend(row.model_copy(deep=True) for row in rows)

    @bounded("query_swap_history")
    async def query_swap_history(self, user_id: str) -> List[SwapHistoryEntry]:
        await self._tick()
        rows = [r.model_copy(deep=True) for r in self.history if r.user_id == user_id]
        return sorted(rows, key=lambda r: r.timestamp, reverse=True)

    @bounded("complete_swap")
    async def call_atomic_complete_swap(self, swap_id: str, actor_id: str) -> CompleteSwapResult:
        await self._tick()
        async with self._lock:
            swap = self.swaps.get(swap_id)
            if not swap:
                return CompleteSwapResult(ok=False, reason="not_found")
            if not swap.is_participant(actor_id):
                return CompleteSwapResult(ok=False, reason="forbidden")
            if swap.status != SwapStatus.APPROVED:
                return CompleteSwapResult(ok=False, reason="invalid_state")

            now = self._now()
            completed = swap.model_copy(
                update={"status": SwapStatus.COMPLETED, "completed_at": now, "updated_at": now}
            )
            self.swaps[swap_id] = completed
            self.history.extend(history_rows(completed, SwapAction.COMPLETED, SwapAction.COMPLETED, now))
            return CompleteSwapResult(ok=True, swap=completed.model_copy(deep=True))

    # notifications

    @bounded("insert_notification")
    async def insert_notification(self, fields: Dict[str, Any]) -> Notification:
        await self._tick()
        notification = Notification(**{"id": new_id(), "created_at": self._now(), **fields})
        async with self._lock:
            self.notifications[notification.id] = notification
        return notification.model_copy(deep=True)

    @bounded("query_notifications")
    async def query_notifications(
        self, user_id: str, unread_only: bool = False, limit: Optional[int] = None
    ) -> List[Notification]:
        await self._tick()
        rows = [
            n.model_copy(deep=True)
            for n in self.notifications.values()
            if n.user_id == user_id and not (unread_only and n.is_read)
        ]
        rows.sort(key=lambda n: n.created_at, reverse=True)
        return rows[:limit] if limit else rows

    @bounded("mark_notification_read")
    async def mark_notification_read(self, notification_id: str, user_id: str) -> Optional[Notification]:
        await self._tick()
        async with self._lock:
            notification = self.notifications.get(notification_id)
            if not notification or notification.user_id != user_id:
                return None
            if notification.read_at is None:
                notification = notification.model_copy(update={"read_at": self._now()})
                self.notifications[notification_id] = notification
            return notification.model_copy(deep=True)

    # reviews

    @bounded("get_review")
    async def get_review(self, book_id: str, user_id: str) -> Optional[Review]:
        await self._tick()
        for review in self.reviews.values():
            if review.book_id == book_id and review.user_id == user_id:
                return review.model_copy(deep=True)
        return None

    @bounded("insert_review")
    async def insert_review(self, fields: Dict[str, Any]) -> Review:
        await self._tick()
        now = self._now()
        review = Review(**{"id": new_id(), "created_at": now, "updated_at": now, **fields})
        async with self._lock:
            self.reviews[review.id] = review
        return review.model_copy(deep=True)

    @bounded("update_review")
    async def update_review(self, review_id: str, fields: Dict[str, Any]) -> Optional[Review]:
        await self._tick()
        async with self._lock:
            review = self.reviews.get(review_id)
            if not review:
                return None
            updated = review.model_copy(update={**fields, "updated_at": self._now()})
            self.reviews[review_id] = updated
            return updated.model_copy(deep=True)

    @bounded("query_reviews")
    async def query_reviews(self, book_id: str) -> List[Review]:
        await self._tick()
        rows = [r.model_copy(deep=True) for r in self.reviews.values() if r.book_id == book_id]
        return sorted(rows, key=lambda r: r.created_at, reverse=True)
