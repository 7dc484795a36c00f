import asyncio

import pytest

from bookswap.core.exceptions import (
    AuthRequired,
    Forbidden,
    InvalidRequest,
    InvalidState,
    NotFound,
    StoreUnavailable,
)
from bookswap.core.memory import InMemoryStore
from bookswap.schemas.book import BookCreate, SwapButtonState
from bookswap.schemas.notification import NotificationType
from bookswap.schemas.swap import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    SwapAction,
    SwapDecision,
    SwapRequest,
    SwapStatus,
    can_transition,
)
from bookswap.services.catalog_service import CatalogService
from bookswap.services.swap_service import SwapService


def test_transition_table():
    assert can_transition(SwapStatus.PENDING, SwapStatus.APPROVED)
    assert can_transition(SwapStatus.PENDING, SwapStatus.DENIED)
    assert can_transition(SwapStatus.PENDING, SwapStatus.CANCELLED)
    assert can_transition(SwapStatus.APPROVED, SwapStatus.COMPLETED)
    assert not can_transition(SwapStatus.PENDING, SwapStatus.COMPLETED)
    assert not can_transition(SwapStatus.APPROVED, SwapStatus.CANCELLED)
    assert not can_transition(SwapStatus.APPROVED, SwapStatus.PENDING)
    assert TERMINAL_STATUSES == {SwapStatus.DENIED, SwapStatus.CANCELLED, SwapStatus.COMPLETED}
    for terminal in TERMINAL_STATUSES:
        assert not any(can_transition(terminal, target) for target in SwapStatus)
    assert set(ALLOWED_TRANSITIONS) == set(SwapStatus)


# creation

async def test_create_swap_request(swaps, store, pending_swap):
    swap, offered, requested = await pending_swap()

    assert swap.status == SwapStatus.PENDING
    assert swap.requester_id == "alice"
    assert swap.book_owner_id == "bob"
    assert swap.book_offered_id == offered.id
    assert swap.book_requested_id == requested.id

    bob_notifications = await store.query_notifications("bob")
    assert len(bob_notifications) == 1
    assert bob_notifications[0].type == NotificationType.SWAP_REQUEST
    assert bob_notifications[0].related_swap_id == swap.id
    assert await store.query_notifications("alice") == []

    rows = [r for r in store.history if r.swap_id == swap.id]
    assert {(r.user_id, r.action) for r in rows} == {
        ("alice", SwapAction.REQUESTED),
        ("bob", SwapAction.RECEIVED_REQUEST),
    }
    alice_row = next(r for r in rows if r.user_id == "alice")
    assert alice_row.partner_id == "bob"
    assert alice_row.book_given_id == offered.id
    assert alice_row.book_received_id == requested.id


async def test_create_requires_actor(swaps, add_book):
    offered = await add_book("alice")
    requested = await add_book("bob")
    with pytest.raises(AuthRequired):
        await swaps.create_swap_request(None, requested.id, offered.id)


async def test_cannot_offer_someone_elses_book(swaps, store, add_book):
    carol_book = await add_book("carol")
    requested = await add_book("bob")
    with pytest.raises(InvalidRequest, match="only offer books you own"):
        await swaps.create_swap_request("alice", requested.id, carol_book.id)
    assert store.swaps == {}


async def test_cannot_request_own_book(swaps, add_book):
    offered = await add_book("alice")
    also_mine = await add_book("alice")
    with pytest.raises(InvalidRequest, match="your own book"):
        await swaps.create_swap_request("alice", also_mine.id, offered.id)


async def test_offered_book_must_be_available(swaps, add_book):
    offered = await add_book("alice", available_for_swap=False)
    requested = await add_book("bob")
    with pytest.raises(InvalidRequest, match="not available"):
        await swaps.create_swap_request("alice", requested.id, offered.id)


async def test_requested_book_must_be_available(swaps, add_book):
    offered = await add_book("alice")
    requested = await add_book("bob", available_for_swap=False)
    with pytest.raises(InvalidRequest, match="requested book is not available"):
        await swaps.create_swap_request("alice", requested.id, offered.id)


async def test_missing_book(swaps, add_book):
    offered = await add_book("alice")
    with pytest.raises(NotFound):
        await swaps.create_swap_request("alice", "no-such-book", offered.id)


async def test_one_pending_offer_per_book(swaps, add_book, pending_swap):
    swap, offered, _ = await pending_swap()
    other = await add_book("carol")
    with pytest.raises(InvalidRequest, match="pending swap request"):
        await swaps.create_swap_request("alice", other.id, offered.id)

    # once the first offer is withdrawn the book can be offered again
    await swaps.cancel_swap_request(swap.id, "alice", "changed my mind")
    again = await swaps.create_swap_request("alice", other.id, offered.id)
    assert again.status == SwapStatus.PENDING


# approve / deny

async def test_owner_approves(swaps, store, pending_swap):
    swap, _, requested = await pending_swap()

    approved = await swaps.handle_swap_request(swap.id, "bob", SwapDecision.APPROVE)

    assert approved.status == SwapStatus.APPROVED
    assert approved.approved_at is not None
    alice_notifications = await store.query_notifications("alice")
    assert [n.type for n in alice_notifications] == [NotificationType.SWAP_APPROVED]
    assert requested.title in alice_notifications[0].message


async def test_approving_twice_is_rejected(swaps, store, pending_swap):
    swap, _, _ = await pending_swap()
    await swaps.handle_swap_request(swap.id, "bob", SwapDecision.APPROVE)
    before = await store.get_swap_request(swap.id)

    with pytest.raises(InvalidState):
        await swaps.handle_swap_request(swap.id, "bob", SwapDecision.APPROVE)

    assert await store.get_swap_request(swap.id) == before
    assert len(await store.query_notifications("alice")) == 1


async def test_owner_denies(swaps, store, pending_swap):
    swap, _, _ = await pending_swap()

    denied = await swaps.handle_swap_request(swap.id, "bob", "deny")

    assert denied.status == SwapStatus.DENIED
    assert denied.approved_at is None
    assert [n.type for n in await store.query_notifications("alice")] == [NotificationType.SWAP_DENIED]
    with pytest.raises(InvalidState):
        await swaps.handle_swap_request(swap.id, "bob", SwapDecision.APPROVE)


async def test_only_owner_can_decide(swaps, pending_swap):
    swap, _, _ = await pending_swap()
    with pytest.raises(Forbidden):
        await swaps.handle_swap_request(swap.id, "alice", SwapDecision.APPROVE)
    with pytest.raises(Forbidden):
        await swaps.handle_swap_request(swap.id, "mallory", SwapDecision.DENY)


async def test_decide_unknown_swap(swaps):
    with pytest.raises(NotFound):
        await swaps.handle_swap_request("missing", "bob", SwapDecision.APPROVE)


# cancel

async def test_requester_cancels(swaps, store, catalog, pending_swap):
    swap, offered, requested = await pending_swap()

    cancelled = await swaps.cancel_swap_request(swap.id, "alice", "changed my mind")

    assert cancelled.status == SwapStatus.CANCELLED
    assert cancelled.cancel_reason == "changed my mind"
    assert cancelled.cancelled_at is not None
    bob_notifications = await store.query_notifications("bob")
    assert bob_notifications[0].type == NotificationType.SWAP_CANCELLED
    assert "changed my mind" in bob_notifications[0].message

    # availability is left alone
    assert (await store.get_book(offered.id)).available_for_swap is True

    # alice may request the same book again
    books = await catalog.list_available_books("alice")
    listed = next(b for b in books if b.id == requested.id)
    assert listed.swap_state == SwapButtonState.CAN_REQUEST
    again = await swaps.create_swap_request("alice", requested.id, offered.id)
    assert again.status == SwapStatus.PENDING


async def test_only_requester_can_cancel(swaps, pending_swap):
    swap, _, _ = await pending_swap()
    with pytest.raises(Forbidden):
        await swaps.cancel_swap_request(swap.id, "bob", "not mine to cancel")


async def test_cannot_cancel_approved_swap(swaps, pending_swap):
    swap, _, _ = await pending_swap()
    await swaps.handle_swap_request(swap.id, "bob", SwapDecision.APPROVE)
    with pytest.raises(InvalidState):
        await swaps.cancel_swap_request(swap.id, "alice", "too late")


# complete

async def test_complete_pending_swap_is_rejected(swaps, store, pending_swap):
    swap, _, _ = await pending_swap()
    history_before = list(store.history)

    with pytest.raises(InvalidState):
        await swaps.complete_swap(swap.id, "alice")

    assert store.history == history_before
    assert (await store.get_swap_request(swap.id)).status == SwapStatus.PENDING


async def test_complete_approved_swap(swaps, store, pending_swap):
    swap, offered, requested = await pending_swap()
    await swaps.handle_swap_request(swap.id, "bob", SwapDecision.APPROVE)

    completed = await swaps.complete_swap(swap.id, "bob")

    assert completed.status == SwapStatus.COMPLETED
    assert completed.completed_at is not None
    completion_rows = [r for r in store.history if r.action == SwapAction.COMPLETED]
    assert {r.user_id for r in completion_rows} == {"alice", "bob"}
    bob_row = next(r for r in completion_rows if r.user_id == "bob")
    assert bob_row.book_given_id == requested.id
    assert bob_row.book_received_id == offered.id
    assert (await store.query_notifications("alice"))[0].type == NotificationType.SWAP_COMPLETED

    with pytest.raises(InvalidState):
        await swaps.complete_swap(swap.id, "alice")


async def test_outsider_cannot_complete(swaps, pending_swap):
    swap, _, _ = await pending_swap()
    await swaps.handle_swap_request(swap.id, "bob", SwapDecision.APPROVE)
    with pytest.raises(Forbidden):
        await swaps.complete_swap(swap.id, "mallory")


@pytest.mark.parametrize("terminal", ["deny", "cancel", "complete"])
async def test_terminal_states_reject_every_transition(swaps, pending_swap, terminal):
    swap, _, _ = await pending_swap()
    if terminal == "deny":
        await swaps.handle_swap_request(swap.id, "bob", SwapDecision.DENY)
    elif terminal == "cancel":
        await swaps.cancel_swap_request(swap.id, "alice", "")
    else:
        await swaps.handle_swap_request(swap.id, "bob", SwapDecision.APPROVE)
        await swaps.complete_swap(swap.id, "alice")

    with pytest.raises(InvalidState):
        await swaps.handle_swap_request(swap.id, "bob", SwapDecision.APPROVE)
    with pytest.raises(InvalidState):
        await swaps.handle_swap_request(swap.id, "bob", SwapDecision.DENY)
    with pytest.raises(InvalidState):
        await swaps.cancel_swap_request(swap.id, "alice", "")
    with pytest.raises(InvalidState):
        await swaps.complete_swap(swap.id, "alice")


# concurrency

async def test_racing_approve_and_cancel(swaps, store, pending_swap):
    swap, _, _ = await pending_swap()

    results = await asyncio.gather(
        swaps.handle_swap_request(swap.id, "bob", SwapDecision.APPROVE),
        swaps.cancel_swap_request(swap.id, "alice", "changed my mind"),
        return_exceptions=True,
    )

    winners = [r for r in results if isinstance(r, SwapRequest)]
    losers = [r for r in results if isinstance(r, InvalidState)]
    assert len(winners) == 1
    assert len(losers) == 1
    final = await store.get_swap_request(swap.id)
    assert final.status == winners[0].status


async def test_conditional_update_has_one_winner(store, pending_swap):
    swap, _, _ = await pending_swap()

    results = await asyncio.gather(
        store.update_swap_status(swap.id, SwapStatus.PENDING, SwapStatus.APPROVED),
        store.update_swap_status(swap.id, SwapStatus.PENDING, SwapStatus.CANCELLED),
    )

    assert sorted(r is not None for r in results) == [False, True]


async def test_concurrent_offers_of_one_book(swaps, store, add_book):
    offered = await add_book("alice", title="Dune")
    first = await add_book("bob", title="Beloved")
    second = await add_book("carol", title="Emma")

    results = await asyncio.gather(
        swaps.create_swap_request("alice", first.id, offered.id),
        swaps.create_swap_request("alice", second.id, offered.id),
        return_exceptions=True,
    )

    assert len([r for r in results if isinstance(r, SwapRequest)]) == 1
    assert len([r for r in results if isinstance(r, InvalidRequest)]) == 1
    pending = [s for s in store.swaps.values() if s.status == SwapStatus.PENDING]
    assert len(pending) == 1


# queries

async def test_list_user_swaps_and_stats(swaps, add_book, pending_swap):
    swap, _, _ = await pending_swap()
    carol_book = await add_book("carol")
    bob_offer = await add_book("bob", title="Bob's spare")
    bob_outgoing = await swaps.create_swap_request("bob", carol_book.id, bob_offer.id)
    await swaps.handle_swap_request(swap.id, "bob", SwapDecision.APPROVE)

    bob_swaps = await swaps.list_user_swaps("bob")
    assert {s.id for s in bob_swaps} == {swap.id, bob_outgoing.id}
    assert [s.id for s in await swaps.list_user_swaps("bob", role="owner")] == [swap.id]
    assert [s.id for s in await swaps.list_user_swaps("bob", role="requester")] == [
        bob_outgoing.id
    ]
    assert [s.id for s in await swaps.list_user_swaps("bob", status=SwapStatus.PENDING)] == [
        bob_outgoing.id
    ]

    stats = await swaps.get_swap_stats("bob")
    assert stats.total_swaps == 2
    assert stats.active_swaps == 1
    assert stats.pending_requests == 1
    assert stats.completed_swaps == 0


async def test_get_swap_is_participants_only(swaps, pending_swap):
    swap, _, _ = await pending_swap()
    assert (await swaps.get_swap_request(swap.id, "bob")).id == swap.id
    with pytest.raises(Forbidden):
        await swaps.get_swap_request(swap.id, "mallory")
    with pytest.raises(AuthRequired):
        await swaps.get_swap_request(swap.id, "")


async def test_cancel_without_reason(swaps, store, pending_swap):
    swap, _, _ = await pending_swap()

    cancelled = await swaps.cancel_swap_request(swap.id, "alice", None)

    assert cancelled.status == SwapStatus.CANCELLED
    assert cancelled.cancel_reason is None
    bob_notifications = await store.query_notifications("bob")
    assert "Reason" not in bob_notifications[0].message


# store failures after a committed write

class ReadsFailAfterWriteStore(InMemoryStore):
    """Swap reads time out as soon as a swap write has committed."""

    def __init__(self):
        super().__init__()
        self.reads_broken = False

    async def get_swap_request(self, swap_id):
        if self.reads_broken:
            raise StoreUnavailable("get_swap_request timed out, please try again")
        return await super().get_swap_request(swap_id)

    async def insert_swap_request(self, fields):
        swap = await super().insert_swap_request(fields)
        self.reads_broken = True
        return swap

    async def update_swap_status(self, *args, **kwargs):
        updated = await super().update_swap_status(*args, **kwargs)
        if updated is not None:
            self.reads_broken = True
        return updated


@pytest.fixture
def flaky():
    store = ReadsFailAfterWriteStore()
    return store, CatalogService(store), SwapService(store)


async def test_create_finishes_after_committed_insert(flaky):
    store, catalog, swaps = flaky
    offered = await catalog.add_book("alice", BookCreate(title="Dune", author="Frank Herbert"))
    requested = await catalog.add_book("bob", BookCreate(title="Beloved", author="Toni Morrison"))

    swap = await swaps.create_swap_request("alice", requested.id, offered.id)

    assert swap.status == SwapStatus.PENDING
    assert len([r for r in store.history if r.swap_id == swap.id]) == 2
    assert [n.type for n in await store.query_notifications("bob")] == [NotificationType.SWAP_REQUEST]


async def test_decision_and_cancel_finish_after_committed_update(flaky):
    store, catalog, swaps = flaky
    offered = await catalog.add_book("alice", BookCreate(title="Dune", author="Frank Herbert"))
    requested = await catalog.add_book("bob", BookCreate(title="Beloved", author="Toni Morrison"))
    spare = await catalog.add_book("alice", BookCreate(title="Emma", author="Jane Austen"))
    first = await swaps.create_swap_request("alice", requested.id, offered.id)
    second = await swaps.create_swap_request("alice", requested.id, spare.id)

    store.reads_broken = False
    approved = await swaps.handle_swap_request(first.id, "bob", SwapDecision.APPROVE)
    assert approved.status == SwapStatus.APPROVED
    assert approved.approved_at is not None
    assert [n.type for n in await store.query_notifications("alice")] == [NotificationType.SWAP_APPROVED]

    store.reads_broken = False
    cancelled = await swaps.cancel_swap_request(second.id, "alice", "found a copy")
    assert cancelled.status == SwapStatus.CANCELLED
    assert cancelled.cancel_reason == "found a copy"
    assert (await store.query_notifications("bob"))[0].type == NotificationType.SWAP_CANCELLED
