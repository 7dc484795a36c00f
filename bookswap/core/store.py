"""
Persistent store adapter.

The services only talk to a SwapStore. Two implementations exist:
SupabaseStore for deployed environments and InMemoryStore for tests and
local runs. Every store call goes through the ``bounded`` decorator so the
timeout policy lives in one place.
"""
import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Dict, Iterable, List, Optional

import httpx

from .exceptions import StoreUnavailable
from ..schemas.book import Book
from ..schemas.notification import Notification
from ..schemas.review import Review
from ..schemas.swap import CompleteSwapResult, SwapHistoryEntry, SwapRequest, SwapStatus

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def bounded(operation: str):
    """
    Apply the store timeout policy to an adapter coroutine.

    Timeouts and connectivity failures surface as StoreUnavailable so the
    caller can offer a retry. Other exceptions propagate unchanged.
    """
    def decorator(f):
        @wraps(f)
        async def wrapper(self, *args, **kwargs):
            timeout = getattr(self, "timeout", DEFAULT_TIMEOUT)
            try:
                return await asyncio.wait_for(f(self, *args, **kwargs), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Store operation {operation} timed out after {timeout}s")
                raise StoreUnavailable(f"{operation} timed out, please try again")
            except (httpx.HTTPError, OSError) as e:
                logger.warning(f"Store operation {operation} failed: {e}")
                raise StoreUnavailable(f"{operation} failed, please try again") from e
        return wrapper
    return decorator


@dataclass
class BookFilter:
    owner_id: Optional[str] = None
    exclude_owner_id: Optional[str] = None
    available_for_swap: Optional[bool] = None
    genre: Optional[str] = None
    condition: Optional[str] = None
    search: Optional[str] = None

    def matches(self, book: Book) -> bool:
        if self.owner_id is not None and book.owner_id != self.owner_id:
            return False
        if self.exclude_owner_id is not None and book.owner_id == self.exclude_owner_id:
            return False
        if self.available_for_swap is not None and book.available_for_swap != self.available_for_swap:
            return False
        if self.genre and self.genre not in book.genre:
            return False
        if self.condition and book.condition.value != self.condition:
            return False
        if self.search:
            needle = self.search.lower()
            if needle not in book.title.lower() and needle not in book.author.lower():
                return False
        return True


class SwapStore(ABC):
    """Operations the swap domain needs from persistent storage."""

    timeout: float = DEFAULT_TIMEOUT

    # books
    @abstractmethod
    async def get_book(self, book_id: str) -> Optional[Book]: ...

    @abstractmethod
    async def query_books(self, book_filter: BookFilter) -> List[Book]: ...

    @abstractmethod
    async def insert_book(self, fields: Dict[str, Any]) -> Book: ...

    @abstractmethod
    async def update_book(self, book_id: str, fields: Dict[str, Any]) -> Optional[Book]: ...

    # swap requests
    @abstractmethod
    async def get_swap_request(self, swap_id: str) -> Optional[SwapRequest]: ...

    @abstractmethod
    async def insert_swap_request(self, fields: Dict[str, Any]) -> SwapRequest:
        """Insert and return the stored row."""

    @abstractmethod
    async def update_swap_status(
        self,
        swap_id: str,
        expected_status: SwapStatus,
        new_status: SwapStatus,
        extra_fields: Optional[Dict[str, Any]] = None,
    ) -> Optional[SwapRequest]:
        """
        Update only if the row's current status equals expected_status.

        Returns the updated row, or None when nothing matched.
        """

    @abstractmethod
    async def query_swap_requests_for_books(
        self,
        book_ids: Iterable[str],
        role: str = "requested",
        statuses: Optional[Iterable[SwapStatus]] = None,
    ) -> List[SwapRequest]:
        """role is "requested", "offered" or "any"."""

    @abstractmethod
    async def query_swap_requests_by_requester(
        self, requester_id: str, statuses: Optional[Iterable[SwapStatus]] = None
    ) -> List[SwapRequest]: ...

    # swap history
    @abstractmethod
    async def insert_swap_history(self, rows: List[SwapHistoryEntry]) -> None: ...

    @abstractmethod
    async def query_swap_history(self, user_id: str) -> List[SwapHistoryEntry]: ...

    @abstractmethod
    async def call_atomic_complete_swap(self, swap_id: str, actor_id: str) -> CompleteSwapResult:
        """
        Complete an approved swap in one transaction.

        Checks the swap exists, the actor is a participant and the status is
        approved, then sets completed/completed_at and appends both history
        rows. Nothing is written when a check fails.
        """

    # notifications
    @abstractmethod
    async def insert_notification(self, fields: Dict[str, Any]) -> Notification: ...

    @abstractmethod
    async def query_notifications(
        self, user_id: str, unread_only: bool = False, limit: Optional[int] = None
    ) -> List[Notification]: ...

    @abstractmethod
    async def mark_notification_read(self, notification_id: str, user_id: str) -> Optional[Notification]: ...

    # reviews
    @abstractmethod
    async def get_review(self, book_id: str, user_id: str) -> Optional[Review]: ...

    @abstractmethod
    async def insert_review(self, fields: Dict[str, Any]) -> Review: ...

    @abstractmethod
    async def update_review(self, review_id: str, fields: Dict[str, Any]) -> Optional[Review]: ...

    @abstractmethod
    async def query_reviews(self, book_id: str) -> List[Review]: ...


def build_store(settings) -> SwapStore:
    """Create the store configured by settings.store_backend."""
    backend = settings.store_backend.lower()
    if backend == "memory":
        from .memory import InMemoryStore
        return InMemoryStore(timeout=settings.store_timeout_seconds)
    if backend == "supabase":
        from .supabase import SupabaseStore
        return SupabaseStore.from_settings(settings)
    raise ValueError(f"Unknown store backend: {settings.store_backend}")
