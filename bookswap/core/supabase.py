"""
Supabase-backed SwapStore.

Tables: books, book_swaps, swap_history, notifications, book_reviews.
Swap completion goes through the ``complete_swap(p_swap_id, p_user_id)``
Postgres function defined in ``supabase/schema.sql``, which returns
``{"ok": bool, "reason": text, "swap": json}``.
"""
import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from postgrest.exceptions import APIError
from supabase import create_client, Client

from .exceptions import (
    BookSwapError,
    Forbidden,
    InvalidRequest,
    InvalidState,
    NotFound,
    StoreError,
    StoreUnavailable,
)
from .store import BookFilter, SwapStore, bounded, utcnow
from ..schemas.book import Book
from ..schemas.notification import Notification
from ..schemas.review import Review
from ..schemas.swap import (
    OFFER_ALREADY_PENDING,
    CompleteSwapResult,
    SwapHistoryEntry,
    SwapRequest,
    SwapStatus,
)

logger = logging.getLogger(__name__)

BOOKS = "books"
SWAPS = "book_swaps"
HISTORY = "swap_history"
NOTIFICATIONS = "notifications"
REVIEWS = "book_reviews"

# Postgres error codes
UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
CHECK_VIOLATION = "23514"
INSUFFICIENT_PRIVILEGE = "42501"
RAISE_EXCEPTION = "P0001"
QUERY_CANCELED = "57014"


def serialize(value: Any) -> Any:
    """Turn datetimes, enums and nested containers into JSON-safe values."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: serialize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [serialize(item) for item in value]
    return value


def store_error(error: APIError, conflict: Optional[str] = None) -> BookSwapError:
    """
    Map a PostgREST error to a domain error.

    ``conflict`` is the message to use when the write hit a unique index.
    Exceptions raised inside Postgres functions (``P0001``) are mapped by
    their message.
    """
    code = error.code or ""
    message = error.message or "Store request failed"

    if code == UNIQUE_VIOLATION:
        return InvalidRequest(conflict or "This conflicts with an existing record")
    if code in (FOREIGN_KEY_VIOLATION, CHECK_VIOLATION):
        return InvalidRequest(message)
    if code == INSUFFICIENT_PRIVILEGE:
        return Forbidden("You don't have permission to do this")
    if code == RAISE_EXCEPTION:
        lowered = message.lower()
        if "not found" in lowered:
            return NotFound(message)
        if "participant" in lowered or "permission" in lowered:
            return Forbidden(message)
        return InvalidState(message)
    # connection_exception class and statement timeouts
    if code.startswith("08") or code == QUERY_CANCELED:
        return StoreUnavailable("The database is unavailable, please try again")
    return StoreError(f"Store request failed ({code or 'unknown'}): {message}")


class SupabaseStore(SwapStore):
    def __init__(self, client: Client, timeout: float = 10.0):
        self.client = client
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> "SupabaseStore":
        if not settings.supabase_url or not settings.supabase_key:
            raise ValueError(
                "SUPABASE_URL and SUPABASE_KEY must be set in environment variables"
            )
        logger.info(f"Connecting to Supabase at {settings.supabase_url}")
        client = create_client(settings.supabase_url, settings.supabase_key)
        return cls(client, timeout=settings.store_timeout_seconds)

    async def _execute(self, query, conflict: Optional[str] = None) -> Any:
        # supabase-py's sync client blocks, so keep it off the event loop
        try:
            response = await asyncio.to_thread(query.execute)
        except APIError as e:
            logger.warning(f"Supabase rejected request: {e.code} {e.message}")
            raise store_error(e, conflict) from e
        return response.data

    # books

    @bounded("get_book")
    async def get_book(self, book_id: str) -> Optional[Book]:
        rows = await self._execute(self.client.table(BOOKS).select("*").eq("id", book_id).limit(1))
        return Book.model_validate(rows[0]) if rows else None

    @bounded("query_books")
    async def query_books(self, book_filter: BookFilter) -> List[Book]:
        query = self.client.table(BOOKS).select("*")
        if book_filter.owner_id is not None:
            query = query.eq("owner_id", book_filter.owner_id)
        if book_filter.exclude_owner_id is not None:
            query = query.neq("owner_id", book_filter.exclude_owner_id)
        if book_filter.available_for_swap is not None:
            query = query.eq("available_for_swap", book_filter.available_for_swap)
        if book_filter.genre:
            query = query.contains("genre", [book_filter.genre])
        if book_filter.condition:
            query = query.eq("condition", book_filter.condition)
        if book_filter.search:
            term = book_filter.search.replace(",", " ")
            query = query.or_(f"title.ilike.%{term}%,author.ilike.%{term}%")
        rows = await self._execute(query.order("created_at", desc=True))
        return [Book.model_validate(row) for row in rows or []]

    @bounded("insert_book")
    async def insert_book(self, fields: Dict[str, Any]) -> Book:
        rows = await self._execute(self.client.table(BOOKS).insert(serialize(fields)))
        return Book.model_validate(rows[0])

    @bounded("update_book")
    async def update_book(self, book_id: str, fields: Dict[str, Any]) -> Optional[Book]:
        data = serialize({**fields, "updated_at": utcnow()})
        rows = await self._execute(self.client.table(BOOKS).update(data).eq("id", book_id))
        return Book.model_validate(rows[0]) if rows else None

    # swap requests

    @bounded("get_swap_request")
    async def get_swap_request(self, swap_id: str) -> Optional[SwapRequest]:
        rows = await self._execute(self.client.table(SWAPS).select("*").eq("id", swap_id).limit(1))
        return SwapRequest.model_validate(rows[0]) if rows else None

    @bounded("insert_swap_request")
    async def insert_swap_request(self, fields: Dict[str, Any]) -> SwapRequest:
        rows = await self._execute(
            self.client.table(SWAPS).insert(serialize(fields)), conflict=OFFER_ALREADY_PENDING
        )
        return SwapRequest.model_validate(rows[0])

    @bounded("update_swap_status")
    async def update_swap_status(
        self,
        swap_id: str,
        expected_status: SwapStatus,
        new_status: SwapStatus,
        extra_fields: Optional[Dict[str, Any]] = None,
    ) -> Optional[SwapRequest]:
        data = serialize({**(extra_fields or {}), "status": new_status, "updated_at": utcnow()})
        # The status predicate makes this a compare-and-set at the database.
        query = (
            self.client.table(SWAPS)
            .update(data)
            .eq("id", swap_id)
            .eq("status", expected_status.value)
        )
        rows = await self._execute(query)
        return SwapRequest.model_validate(rows[0]) if rows else None

    @bounded("query_swap_requests_for_books")
    async def query_swap_requests_for_books(
        self,
        book_ids: Iterable[str],
        role: str = "requested",
        statuses: Optional[Iterable[SwapStatus]] = None,
    ) -> List[SwapRequest]:
        ids = list(book_ids)
        if not ids:
            return []
        query = self.client.table(SWAPS).select("*")
        if role == "requested":
            query = query.in_("book_requested_id", ids)
        elif role == "offered":
            query = query.in_("book_offered_id", ids)
        else:
            joined = ",".join(ids)
            query = query.or_(f"book_requested_id.in.({joined}),book_offered_id.in.({joined})")
        if statuses is not None:
            query = query.in_("status", [serialize(s) for s in statuses])
        rows = await self._execute(query.order("created_at", desc=True))
        return [SwapRequest.model_validate(row) for row in rows or []]

    @bounded("query_swap_requests_by_requester")
    async def query_swap_requests_by_requester(
        self, requester_id: str, statuses: Optional[Iterable[SwapStatus]] = None
    ) -> List[SwapRequest]:
        query = self.client.table(SWAPS).select("*").eq("requester_id", requester_id)
        if statuses is not None:
            query = query.in_("status", [serialize(s) for s in statuses])
        rows = await self._execute(query.order("created_at", desc=True))
        return [SwapRequest.model_validate(row) for row in rows or []]

    # history

    @bounded("insert_swap_history")
    async def insert_swap_history(self, rows: List[SwapHistoryEntry]) -> None:
        if not rows:
            return
        payload = [serialize(row.model_dump()) for row in rows]
        await self._execute(self.client.table(HISTORY).insert(payload))

    @bounded("query_swap_history")
    async def query_swap_history(self, user_id: str) -> List[SwapHistoryEntry]:
        query = (
            self.client.table(HISTORY)
            .select("*")
            .eq("user_id", user_id)
            .order("timestamp", desc=True)
        )
        rows = await self._execute(query)
        return [SwapHistoryEntry.model_validate(row) for row in rows or []]

    @bounded("complete_swap")
    async def call_atomic_complete_swap(self, swap_id: str, actor_id: str) -> CompleteSwapResult:
        data = await self._execute(
            self.client.rpc("complete_swap", {"p_swap_id": swap_id, "p_user_id": actor_id})
        )
        if isinstance(data, list):
            data = data[0] if data else None
        if not data:
            # A void complete_swap signals failure by raising, so no error
            # and no payload means the swap was completed.
            return CompleteSwapResult(ok=True)
        return CompleteSwapResult.model_validate(data)

    # notifications

    @bounded("insert_notification")
    async def insert_notification(self, fields: Dict[str, Any]) -> Notification:
        rows = await self._execute(self.client.table(NOTIFICATIONS).insert(serialize(fields)))
        return Notification.model_validate(rows[0])

    @bounded("query_notifications")
    async def query_notifications(
        self, user_id: str, unread_only: bool = False, limit: Optional[int] = None
    ) -> List[Notification]:
        query = self.client.table(NOTIFICATIONS).select("*").eq("user_id", user_id)
        if unread_only:
            query = query.is_("read_at", "null")
        query = query.order("created_at", desc=True)
        if limit:
            query = query.limit(limit)
        rows = await self._execute(query)
        return [Notification.model_validate(row) for row in rows or []]

    @bounded("mark_notification_read")
    async def mark_notification_read(self, notification_id: str, user_id: str) -> Optional[Notification]:
        query = (
            self.client.table(NOTIFICATIONS)
            .update({"read_at": utcnow().isoformat()})
            .eq("id", notification_id)
            .eq("user_id", user_id)
            .is_("read_at", "null")
        )
        rows = await self._execute(query)
        if not rows:
            # already read, or not this user's
            query = (
                self.client.table(NOTIFICATIONS)
                .select("*")
                .eq("id", notification_id)
                .eq("user_id", user_id)
                .limit(1)
            )
            rows = await self._execute(query)
        return Notification.model_validate(rows[0]) if rows else None

    # reviews

    @bounded("get_review")
    async def get_review(self, book_id: str, user_id: str) -> Optional[Review]:
        query = (
            self.client.table(REVIEWS)
            .select("*")
            .eq("book_id", book_id)
            .eq("user_id", user_id)
            .limit(1)
        )
        rows = await self._execute(query)
        return Review.model_validate(rows[0]) if rows else None

    @bounded("insert_review")
    async def insert_review(self, fields: Dict[str, Any]) -> Review:
        rows = await self._execute(self.client.table(REVIEWS).insert(serialize(fields)))
        return Review.model_validate(rows[0])

    @bounded("update_review")
    async def update_review(self, review_id: str, fields: Dict[str, Any]) -> Optional[Review]:
        data = serialize({**fields, "updated_at": utcnow()})
        rows = await self._execute(self.client.table(REVIEWS).update(data).eq("id", review_id))
        return Review.model_validate(rows[0]) if rows else None

    @bounded("query_reviews")
    async def query_reviews(self, book_id: str) -> List[Review]:
        query = (
            self.client.table(REVIEWS)
            .select("*")
            .eq("book_id", book_id)
            .order("created_at", desc=True)
        )
        rows = await self._execute(query)
        return [Review.model_validate(row) for row in rows or []]
