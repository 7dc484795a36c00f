import pytest

from bookswap.core.memory import InMemoryStore
from bookswap.schemas.book import BookCreate
from bookswap.services.catalog_service import CatalogService
from bookswap.services.notification_service import NotificationDispatcher
from bookswap.services.review_service import ReviewService
from bookswap.services.swap_service import SwapService


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def notifications(store):
    return NotificationDispatcher(store)


@pytest.fixture
def swaps(store, notifications):
    return SwapService(store, notifications)


@pytest.fixture
def catalog(store):
    return CatalogService(store)


@pytest.fixture
def reviews(store):
    return ReviewService(store)


@pytest.fixture
def add_book(catalog):
    """Factory: ``await add_book(owner_id, title=..., available_for_swap=...)``."""

    async def _add_book(owner_id, title="Untitled", **fields):
        fields.setdefault("author", "Some Author")
        return await catalog.add_book(owner_id, BookCreate(title=title, **fields))

    return _add_book


@pytest.fixture
def pending_swap(swaps, add_book):
    """Factory: alice offers her book for bob's; returns (swap, offered, requested)."""

    async def _pending_swap():
        offered = await add_book("alice", title="Dune")
        requested = await add_book("bob", title="Beloved")
        swap = await swaps.create_swap_request("alice", requested.id, offered.id)
        return swap, offered, requested

    return _pending_swap
