import pytest

from models import Slot, SwapRequest, SlotStatus, SwapRequestStatus
from core.swap_manager import SwapManager
from core.locks import claim_pending_request, claim_swappable_slots
from core.exceptions import (
    MissingSlotIds,
    SlotNotFound,
    NotSlotOwner,
    SelfSwapNotAllowed,
    SlotNotSwappable,
    SwapRequestNotFound,
    NotRequestReceiver,
    NotRequestRequester,
    RequestAlreadyHandled,
    RequestStillPending
)
from services.notification_service import NEW_REQUEST, REQUEST_RESPONSE, MARKETPLACE_UPDATE


@pytest.fixture
def alice(make_user):
    return make_user(name="Alice", email="alice@test.com")


@pytest.fixture
def bob(make_user):
    return make_user(name="Bob", email="bob@test.com")


@pytest.fixture
def carol(make_user):
    return make_user(name="", email="carol@test.com")


@pytest.fixture
def pair(alice, bob, make_slot):
    return make_slot(alice, "Alice slot"), make_slot(bob, "Bob slot", offset_hours=24)


def test_propose_locks_both_slots(db, alice, bob, pair, reload, check_pending_invariant):
    s1, s2 = pair

    swap_request, notices = SwapManager.create_request(db, alice.id, s1.id, s2.id)

    assert swap_request.status == SwapRequestStatus.PENDING
    assert swap_request.requester_id == alice.id
    assert swap_request.receiver_id == bob.id
    assert reload(Slot, s1.id).status == SlotStatus.SWAP_PENDING
    assert reload(Slot, s2.id).status == SlotStatus.SWAP_PENDING
    check_pending_invariant()

    direct, broadcast = notices
    assert direct.user_id == bob.id
    assert direct.payload == {"type": NEW_REQUEST, "swapRequestId": swap_request.id}
    assert broadcast.is_broadcast
    assert broadcast.exclude_user_id == alice.id
    assert broadcast.payload["type"] == MARKETPLACE_UPDATE


def test_propose_precondition_order(db, alice, bob, pair, make_slot):
    s1, s2 = pair

    with pytest.raises(MissingSlotIds):
        SwapManager.create_request(db, alice.id, None, s2.id)

    with pytest.raises(SlotNotFound):
        SwapManager.create_request(db, alice.id, s1.id, 9999)

    with pytest.raises(NotSlotOwner):
        SwapManager.create_request(db, alice.id, s2.id, s1.id)

    own_other = make_slot(alice, "Alice other", offset_hours=48)
    with pytest.raises(SelfSwapNotAllowed):
        SwapManager.create_request(db, alice.id, s1.id, own_other.id)


def test_self_swap_writes_nothing(db, alice, pair, make_slot, reload):
    s1, _ = pair
    own_other = make_slot(alice, "Alice other", offset_hours=48)

    with pytest.raises(SelfSwapNotAllowed):
        SwapManager.create_request(db, alice.id, s1.id, own_other.id)

    assert db.query(SwapRequest).count() == 0
    assert reload(Slot, s1.id).status == SlotStatus.SWAPPABLE
    assert reload(Slot, own_other.id).status == SlotStatus.SWAPPABLE


def test_propose_requires_swappable(db, alice, bob, make_slot, reload):
    busy = make_slot(alice, "Busy", status=SlotStatus.BUSY)
    theirs = make_slot(bob, "Theirs", offset_hours=24)

    with pytest.raises(SlotNotSwappable):
        SwapManager.create_request(db, alice.id, busy.id, theirs.id)

    assert reload(Slot, theirs.id).status == SlotStatus.SWAPPABLE
    assert db.query(SwapRequest).count() == 0


def test_locked_slot_cannot_be_offered_twice(db, alice, bob, carol, pair, make_slot):
    s1, s2 = pair
    carol_slot = make_slot(carol, "Carol slot", offset_hours=72)
    SwapManager.create_request(db, alice.id, s1.id, s2.id)

    with pytest.raises(SlotNotSwappable):
        SwapManager.create_request(db, carol.id, carol_slot.id, s2.id)


def test_accept_exchanges_owners(db, alice, bob, pair, reload, check_pending_invariant):
    s1, s2 = pair
    swap_request, _ = SwapManager.create_request(db, alice.id, s1.id, s2.id)

    resolved, notices = SwapManager.respond(db, bob.id, swap_request.id, True)

    assert resolved.status == SwapRequestStatus.ACCEPTED
    assert resolved.responded_at is not None
    offered, target = reload(Slot, s1.id), reload(Slot, s2.id)
    assert offered.user_id == bob.id
    assert target.user_id == alice.id
    assert offered.status == SlotStatus.BUSY
    assert target.status == SlotStatus.BUSY
    check_pending_invariant()

    direct, broadcast = notices
    assert direct.user_id == alice.id
    assert direct.payload["type"] == REQUEST_RESPONSE
    assert direct.payload["status"] == "ACCEPTED"
    assert broadcast.exclude_user_id == bob.id


def test_reject_restores_slots(db, alice, bob, pair, reload, check_pending_invariant):
    s1, s2 = pair
    swap_request, _ = SwapManager.create_request(db, alice.id, s1.id, s2.id)

    resolved, notices = SwapManager.respond(db, bob.id, swap_request.id, False)

    assert resolved.status == SwapRequestStatus.REJECTED
    offered, target = reload(Slot, s1.id), reload(Slot, s2.id)
    assert offered.user_id == alice.id
    assert target.user_id == bob.id
    assert offered.status == SlotStatus.SWAPPABLE
    assert target.status == SlotStatus.SWAPPABLE
    assert notices[0].payload["status"] == "REJECTED"
    check_pending_invariant()


def test_second_response_is_conflict(db, alice, bob, pair, reload):
    s1, s2 = pair
    swap_request, _ = SwapManager.create_request(db, alice.id, s1.id, s2.id)
    SwapManager.respond(db, bob.id, swap_request.id, True)

    with pytest.raises(RequestAlreadyHandled):
        SwapManager.respond(db, bob.id, swap_request.id, False)

    assert reload(SwapRequest, swap_request.id).status == SwapRequestStatus.ACCEPTED
    assert reload(Slot, s1.id).user_id == bob.id
    assert reload(Slot, s1.id).status == SlotStatus.BUSY


def test_only_receiver_may_respond(db, alice, bob, carol, pair, reload):
    s1, s2 = pair
    swap_request, _ = SwapManager.create_request(db, alice.id, s1.id, s2.id)

    with pytest.raises(NotRequestReceiver):
        SwapManager.respond(db, carol.id, swap_request.id, True)

    with pytest.raises(NotRequestReceiver):
        SwapManager.respond(db, alice.id, swap_request.id, True)

    assert reload(SwapRequest, swap_request.id).status == SwapRequestStatus.PENDING
    assert reload(Slot, s1.id).status == SlotStatus.SWAP_PENDING


def test_respond_to_missing_request(db, bob):
    with pytest.raises(SwapRequestNotFound):
        SwapManager.respond(db, bob.id, 12345, True)


def test_stale_reader_loses_resolution_race(session_factory, db, alice, bob, pair, reload):
    """兩個回應同時讀到 PENDING：後寫入的那個必須失敗，狀態只反映贏家"""
    s1, s2 = pair
    swap_request, _ = SwapManager.create_request(db, alice.id, s1.id, s2.id)

    stale = session_factory()
    try:
        stale_request = stale.get(SwapRequest, swap_request.id)
        assert stale_request.status == SwapRequestStatus.PENDING

        winner = session_factory()
        try:
            SwapManager.respond(winner, bob.id, swap_request.id, True)
        finally:
            winner.close()

        with pytest.raises(RequestAlreadyHandled):
            claim_pending_request(stale, stale_request, SwapRequestStatus.REJECTED)
        stale.rollback()
    finally:
        stale.close()

    assert reload(SwapRequest, swap_request.id).status == SwapRequestStatus.ACCEPTED
    assert reload(Slot, s1.id).user_id == bob.id
    assert reload(Slot, s2.id).user_id == alice.id


def test_stale_reader_loses_proposal_race(session_factory, db, alice, bob, carol, pair, make_slot, reload):
    s1, s2 = pair
    carol_slot = make_slot(carol, "Carol slot", offset_hours=72)

    stale = session_factory()
    try:
        assert stale.get(Slot, s2.id).status == SlotStatus.SWAPPABLE

        SwapManager.create_request(db, alice.id, s1.id, s2.id)

        with pytest.raises(SlotNotSwappable):
            claim_swappable_slots(stale, [carol_slot.id, s2.id])
        stale.rollback()
    finally:
        stale.close()

    assert reload(Slot, carol_slot.id).status == SlotStatus.SWAPPABLE
    assert db.query(SwapRequest).count() == 1


def test_withdraw_releases_slots(db, alice, bob, pair, reload, check_pending_invariant):
    s1, s2 = pair
    swap_request, _ = SwapManager.create_request(db, alice.id, s1.id, s2.id)

    notices = SwapManager.withdraw(db, alice.id, swap_request.id)

    assert reload(SwapRequest, swap_request.id) is None
    assert reload(Slot, s1.id).status == SlotStatus.SWAPPABLE
    assert reload(Slot, s2.id).status == SlotStatus.SWAPPABLE
    assert notices[0].user_id == bob.id
    check_pending_invariant()


def test_withdraw_rules(db, alice, bob, pair):
    s1, s2 = pair
    swap_request, _ = SwapManager.create_request(db, alice.id, s1.id, s2.id)

    with pytest.raises(NotRequestRequester):
        SwapManager.withdraw(db, bob.id, swap_request.id)

    SwapManager.respond(db, bob.id, swap_request.id, False)
    with pytest.raises(RequestAlreadyHandled):
        SwapManager.withdraw(db, alice.id, swap_request.id)


def test_dismiss_only_terminal_requests(db, alice, bob, pair, reload, check_pending_invariant):
    s1, s2 = pair
    swap_request, _ = SwapManager.create_request(db, alice.id, s1.id, s2.id)

    with pytest.raises(RequestStillPending):
        SwapManager.dismiss(db, alice.id, swap_request.id)
    check_pending_invariant()

    SwapManager.respond(db, bob.id, swap_request.id, True)

    with pytest.raises(NotRequestRequester):
        SwapManager.dismiss(db, bob.id, swap_request.id)

    SwapManager.dismiss(db, alice.id, swap_request.id)
    assert reload(SwapRequest, swap_request.id) is None
    assert reload(Slot, s1.id).status == SlotStatus.BUSY

    with pytest.raises(SwapRequestNotFound):
        SwapManager.dismiss(db, alice.id, swap_request.id)


def test_listings(db, alice, bob, carol, pair, make_slot):
    s1, s2 = pair
    carol_slot = make_slot(carol, "Carol slot", offset_hours=72)

    market = SwapManager.list_swappable_slots(db, alice.id)
    assert {entry["id"] for entry in market} == {s2.id, carol_slot.id}
    names = {entry["id"]: entry["owner_name"] for entry in market}
    assert names[s2.id] == "Bob"
    assert names[carol_slot.id] == "carol"

    swap_request, _ = SwapManager.create_request(db, alice.id, s1.id, s2.id)

    assert {entry["id"] for entry in SwapManager.list_swappable_slots(db, carol.id)} == set()

    incoming = SwapManager.list_incoming(db, bob.id)
    assert len(incoming) == 1
    assert incoming[0]["swap_request_id"] == swap_request.id
    assert incoming[0]["requester_name"] == "Alice"
    assert incoming[0]["requester_slot_title"] == "Alice slot"
    assert SwapManager.list_incoming(db, alice.id) == []

    SwapManager.respond(db, bob.id, swap_request.id, True)

    assert SwapManager.list_incoming(db, bob.id) == []
    outgoing = SwapManager.list_outgoing(db, alice.id)
    assert len(outgoing) == 1
    assert outgoing[0]["status"] == SwapRequestStatus.ACCEPTED
    assert outgoing[0]["receiver_name"] == "Bob"
    assert outgoing[0]["receiver_slot_title"] == "Bob slot"
    assert SwapManager.list_outgoing(db, bob.id) == []
