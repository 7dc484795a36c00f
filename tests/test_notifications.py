import pytest

from bookswap.core.exceptions import NotFound
from bookswap.core.memory import InMemoryStore
from bookswap.schemas.book import BookCreate
from bookswap.schemas.notification import NotificationType
from bookswap.schemas.swap import SwapDecision, SwapStatus
from bookswap.services.catalog_service import CatalogService
from bookswap.services.notification_service import NotificationDispatcher
from bookswap.services.swap_service import SwapService


class BrokenNotificationStore(InMemoryStore):
    async def insert_notification(self, fields):
        raise RuntimeError("notifications table is gone")


async def test_emit_persists_notification(notifications, store):
    await notifications.emit("bob", NotificationType.SWAP_REQUEST, "New Swap Request", "hello", "swap-1")

    rows = await store.query_notifications("bob")
    assert len(rows) == 1
    assert rows[0].title == "New Swap Request"
    assert rows[0].related_swap_id == "swap-1"
    assert rows[0].is_read is False


async def test_failed_notification_does_not_block_transition(caplog):
    store = BrokenNotificationStore()
    catalog = CatalogService(store)
    swaps = SwapService(store, NotificationDispatcher(store))
    offered = await catalog.add_book("alice", BookCreate(title="Dune", author="Frank Herbert"))
    requested = await catalog.add_book("bob", BookCreate(title="Beloved", author="Toni Morrison"))

    swap = await swaps.create_swap_request("alice", requested.id, offered.id)
    approved = await swaps.handle_swap_request(swap.id, "bob", SwapDecision.APPROVE)

    assert approved.status == SwapStatus.APPROVED
    assert (await store.get_swap_request(swap.id)).status == SwapStatus.APPROVED
    assert store.notifications == {}
    assert "Failed to send swap_approved notification" in caplog.text


async def test_list_newest_first_with_limit(notifications):
    for i in range(3):
        await notifications.emit("bob", NotificationType.SWAP_REQUEST, f"n{i}", "msg")

    rows = await notifications.list_notifications("bob", limit=2)
    assert [n.title for n in rows] == ["n2", "n1"]


async def test_mark_read(notifications, store):
    await notifications.emit("bob", NotificationType.SWAP_DENIED, "Denied", "msg")
    await notifications.emit("bob", NotificationType.SWAP_APPROVED, "Approved", "msg")
    first = (await store.query_notifications("bob"))[-1]

    read = await notifications.mark_read(first.id, "bob")
    assert read.is_read

    unread = await notifications.list_notifications("bob", unread_only=True)
    assert [n.title for n in unread] == ["Approved"]


async def test_mark_read_belongs_to_user(notifications, store):
    await notifications.emit("bob", NotificationType.SWAP_DENIED, "Denied", "msg")
    row = (await store.query_notifications("bob"))[0]

    with pytest.raises(NotFound):
        await notifications.mark_read(row.id, "alice")
    with pytest.raises(NotFound):
        await notifications.mark_read("missing", "bob")
    assert not (await store.query_notifications("bob"))[0].is_read
