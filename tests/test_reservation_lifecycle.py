# tests/test_reservation_lifecycle.py
import re
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from vendgros import crud
from vendgros.core.time_policy import ensure_aware_utc
from vendgros.logic.reservation_phase import compute_reservation_phase, seconds_until_expiry
from vendgros.models import AccountStatus, EventType, ListingStatus, ReservationStatus


# ---------------------------------------------------------
# 생성 + 재고 홀드
# ---------------------------------------------------------
def test_create_holds_inventory_and_prices_deposit(clock, db, listing, buyer):
    resv = crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer.id, quantity=3)

    assert resv.status == ReservationStatus.PENDING
    assert resv.total_price == 30.0
    assert resv.deposit_amount == 1.5
    assert ensure_aware_utc(resv.expires_at) == clock.base + timedelta(minutes=30)
    assert re.fullmatch(r"[A-Z0-9]{6}", resv.verification_code)
    assert re.fullmatch(r"[0-9a-f]{64}", resv.qr_code_hash)

    db.refresh(listing)
    assert listing.quantity_available == 7
    assert listing.status == ListingStatus.PUBLISHED


def test_deposit_is_rounded_to_cents(clock, db, make_listing, buyer):
    listing = make_listing(price_per_piece=3.33, quantity_total=50)
    resv = crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer.id, quantity=7)
    # 23.31 * 0.05 = 1.1655
    assert resv.total_price == 23.31
    assert resv.deposit_amount == 1.17


def test_listing_flips_to_reserved_when_sold_out(clock, db, make_listing, buyer, buyer2):
    listing = make_listing(quantity_total=4)
    crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer.id, quantity=4)

    db.refresh(listing)
    assert listing.quantity_available == 0
    assert listing.status == ListingStatus.RESERVED

    with pytest.raises(crud.ConflictError, match="insufficient quantity"):
        crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer2.id, quantity=1)

    db.refresh(listing)
    assert listing.quantity_available == 0


def test_over_quantity_is_rejected_without_side_effects(clock, db, listing, buyer):
    with pytest.raises(crud.ConflictError):
        crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer.id, quantity=11)

    db.refresh(listing)
    assert listing.quantity_available == 10
    assert crud.list_buyer_reservations(db, buyer_id=buyer.id) == []


def test_min_and_max_per_buyer(clock, db, make_listing, buyer):
    listing = make_listing(min_per_buyer=2, max_per_buyer=5)

    with pytest.raises(crud.ValidationError, match="minimum"):
        crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer.id, quantity=1)
    with pytest.raises(crud.ValidationError, match="maximum"):
        crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer.id, quantity=6)

    resv = crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer.id, quantity=5)
    assert resv.quantity_reserved == 5


def test_cannot_reserve_own_or_unpublished_listing(clock, db, make_listing, seller, buyer):
    listing = make_listing()
    with pytest.raises(crud.ForbiddenError):
        crud.create_reservation(db, listing_id=listing.id, buyer_id=seller.id, quantity=1)

    draft = make_listing(publish=False)
    with pytest.raises(crud.ConflictError, match="not available"):
        crud.create_reservation(db, listing_id=draft.id, buyer_id=buyer.id, quantity=1)

    with pytest.raises(crud.NotFoundError):
        crud.create_reservation(db, listing_id=9999, buyer_id=buyer.id, quantity=1)

    with pytest.raises(crud.ValidationError):
        crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer.id, quantity=0)


def test_suspended_buyer_cannot_reserve(clock, db, listing, buyer):
    crud.set_account_status(db, user_id=buyer.id, status=AccountStatus.SUSPENDED)
    with pytest.raises(crud.ForbiddenError):
        crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer.id, quantity=1)


def test_verification_codes_are_unique(clock, db, make_listing, buyer):
    listing = make_listing(quantity_total=100)
    codes = {
        crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer.id, quantity=1).verification_code
        for _ in range(20)
    }
    assert len(codes) == 20


# ---------------------------------------------------------
# 취소
# ---------------------------------------------------------
def test_cancel_releases_hold_once(clock, db, make_listing, buyer, buyer2):
    listing = make_listing(quantity_total=2)
    resv = crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer.id, quantity=2)

    with pytest.raises(crud.ForbiddenError):
        crud.cancel_reservation(db, reservation_id=resv.id, buyer_id=buyer2.id)

    cancelled = crud.cancel_reservation(db, reservation_id=resv.id, buyer_id=buyer.id)
    assert cancelled.status == ReservationStatus.CANCELLED
    assert cancelled.cancel_reason == "buyer_cancelled"

    db.refresh(listing)
    assert listing.quantity_available == 2
    assert listing.status == ListingStatus.PUBLISHED

    with pytest.raises(crud.ConflictError):
        crud.cancel_reservation(db, reservation_id=resv.id, buyer_id=buyer.id)

    # 만료 스윕이 한 번 더 반환하지 않는다
    clock.advance(60)
    assert crud.expire_reservations(db).cancelled == 0
    db.refresh(listing)
    assert listing.quantity_available == 2


# ---------------------------------------------------------
# 만료 스윕
# ---------------------------------------------------------
def test_expire_sweep_cancels_only_expired(clock, db, listing, buyer, buyer2):
    old = crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer.id, quantity=3)
    clock.advance(20)
    fresh = crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer2.id, quantity=2)

    clock.advance(31)
    result = crud.expire_reservations(db)

    assert result.cancelled == 1
    assert result.failed == 0
    assert result.details == [{"id": old.id, "success": True}]

    old = crud.get_reservation(db, old.id)
    assert old.status == ReservationStatus.CANCELLED
    assert old.cancel_reason == "payment_timeout"
    assert ensure_aware_utc(old.cancelled_at) == clock.base + timedelta(minutes=31)
    assert crud.get_reservation(db, fresh.id).status == ReservationStatus.PENDING

    db.refresh(listing)
    assert listing.quantity_available == 8

    # 두 번째 스윕은 아무 것도 하지 않는다
    again = crud.expire_reservations(db)
    assert again.cancelled == 0
    assert again.details == []


def test_expiry_boundary_is_strict(clock, db, listing, buyer):
    resv = crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer.id, quantity=1)
    clock.advance(30)  # now == expires_at
    assert crud.expire_reservations(db).cancelled == 0
    assert crud.get_reservation(db, resv.id).status == ReservationStatus.PENDING


def test_expire_sweep_continues_after_row_failure(clock, db, listing, buyer, buyer2, monkeypatch):
    first = crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer.id, quantity=1)
    second = crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer2.id, quantity=2)

    real_release = crud._release_inventory
    calls = {"n": 0}

    def _flaky_release(session, listing_id, qty):
        calls["n"] += 1
        if calls["n"] == 1:
            raise OperationalError("UPDATE listings", {}, Exception("database is locked"))
        return real_release(session, listing_id, qty)

    monkeypatch.setattr(crud, "_release_inventory", _flaky_release)

    clock.advance(45)
    result = crud.expire_reservations(db)

    assert result.cancelled == 1
    assert result.failed == 1
    by_id = {d["id"]: d for d in result.details}
    assert by_id[first.id]["success"] is False
    assert by_id[second.id]["success"] is True

    # 실패한 행은 롤백되어 그대로 PENDING (다음 스윕에서 다시 시도)
    assert crud.get_reservation(db, first.id).status == ReservationStatus.PENDING
    db.refresh(listing)
    assert listing.quantity_available == 10 - 1

    retry = crud.expire_reservations(db)
    assert retry.cancelled == 1
    db.refresh(listing)
    assert listing.quantity_available == 10


def test_expire_sweep_can_target_one_listing(clock, db, make_listing, buyer):
    a = make_listing(title="A")
    b = make_listing(title="B")
    crud.create_reservation(db, listing_id=a.id, buyer_id=buyer.id, quantity=1)
    crud.create_reservation(db, listing_id=b.id, buyer_id=buyer.id, quantity=1)

    clock.advance(31)
    result = crud.expire_reservations(db, listing_id=a.id)
    assert result.cancelled == 1
    assert crud.audit_listing_inventory(db, b.id)["stats"]["pending_qty"] == 1


def test_next_pending_expiry(clock, db, listing, buyer):
    assert crud.next_pending_expiry(db) is None
    crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer.id, quantity=1)
    assert crud.next_pending_expiry(db) == clock.base + timedelta(minutes=30)


# ---------------------------------------------------------
# 결제 확정
# ---------------------------------------------------------
def test_confirm_is_idempotent_and_does_not_decrement_again(clock, db, listing, buyer):
    resv = crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer.id, quantity=4)

    first = crud.confirm_reservation(db, reservation_id=resv.id, payment_intent_id="pi_1")
    assert first.already_confirmed is False
    assert first.reservation.status == ReservationStatus.CONFIRMED
    assert ensure_aware_utc(first.reservation.confirmed_at) == clock.base

    second = crud.confirm_reservation(db, reservation_id=resv.id, payment_intent_id="pi_1")
    assert second.already_confirmed is True

    with pytest.raises(crud.ConflictError, match="different payment"):
        crud.confirm_reservation(db, reservation_id=resv.id, payment_intent_id="pi_other")

    db.refresh(listing)
    assert listing.quantity_available == 6


def test_confirm_beats_pending_expiry_sweep(clock, db, listing, buyer):
    resv = crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer.id, quantity=2)

    # 만료 시각은 지났지만 아직 스윕 전 → 결제 성공이면 확정
    clock.advance(35)
    assert compute_reservation_phase(crud.get_reservation(db, resv.id)) == "PENDING_EXPIRED"

    result = crud.confirm_reservation(db, reservation_id=resv.id, payment_intent_id="pi_late")
    assert result.reservation.status == ReservationStatus.CONFIRMED

    sweep = crud.expire_reservations(db)
    assert sweep.cancelled == 0

    db.refresh(listing)
    assert listing.quantity_available == 8


def test_confirm_between_sweep_select_and_update_wins(clock, db, listing, buyer, monkeypatch):
    resv = crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer.id, quantity=2)
    clock.advance(35)

    real_expire_one = crud._expire_one

    def _confirm_then_expire(session, row, now):
        # 스윕이 행을 고른 뒤, UPDATE 직전에 결제 확정이 끼어든다
        crud.confirm_reservation(session, reservation_id=row.id, payment_intent_id="pi_race")
        return real_expire_one(session, row, now)

    monkeypatch.setattr(crud, "_expire_one", _confirm_then_expire)
    sweep = crud.expire_reservations(db)

    assert sweep.cancelled == 0
    assert sweep.failed == 0
    assert sweep.skipped == 1
    assert sweep.details == [{"id": resv.id, "success": False, "skipped": True}]

    db.expire_all()
    assert crud.get_reservation(db, resv.id).status == ReservationStatus.CONFIRMED
    assert crud.get_listing(db, listing.id).quantity_available == 8
    types = [e.event_type for e in crud.list_events(db, reservation_id=resv.id)]
    assert EventType.RESERVATION_EXPIRED not in types


def test_confirm_after_expiry_is_conflict(clock, db, listing, buyer):
    resv = crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer.id, quantity=2)
    clock.advance(31)
    crud.expire_reservations(db)

    with pytest.raises(crud.ConflictError):
        crud.confirm_reservation(db, reservation_id=resv.id, payment_intent_id="pi_x")

    db.refresh(listing)
    assert listing.quantity_available == 10


def test_confirm_unknown_reservation(clock, db):
    with pytest.raises(crud.NotFoundError):
        crud.confirm_reservation(db, reservation_id=12345, payment_intent_id="pi_x")


# ---------------------------------------------------------
# 픽업 / 노쇼
# ---------------------------------------------------------
def _confirmed(db, listing, buyer, qty=2):
    resv = crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer.id, quantity=qty)
    return crud.confirm_reservation(db, reservation_id=resv.id, payment_intent_id=f"pi_{resv.id}").reservation


def test_verify_code_rules(clock, db, make_listing, seller, buyer, buyer2):
    listing = make_listing()
    pending = crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer2.id, quantity=1)
    resv = _confirmed(db, listing, buyer)

    found = crud.verify_code(db, seller_id=seller.id, verification_code=f"  {resv.verification_code.lower()} ")
    assert found.id == resv.id

    with pytest.raises(crud.ConflictError, match="not been paid"):
        crud.verify_code(db, seller_id=seller.id, verification_code=pending.verification_code)

    with pytest.raises(crud.ForbiddenError):
        crud.verify_code(db, seller_id=buyer2.id, verification_code=resv.verification_code)

    with pytest.raises(crud.NotFoundError):
        crud.verify_code(db, seller_id=seller.id, verification_code="ZZZZZZ")


def test_complete_pickup_and_listing_completion(clock, db, make_listing, seller, buyer):
    listing = make_listing(quantity_total=2)
    resv = _confirmed(db, listing, buyer, qty=2)

    with pytest.raises(crud.ValidationError):
        crud.complete_pickup(db, seller_id=seller.id, reservation_id=resv.id, verification_code="WRONG1")
    with pytest.raises(crud.ForbiddenError):
        crud.complete_pickup(db, seller_id=buyer.id, reservation_id=resv.id)

    done = crud.complete_pickup(
        db, seller_id=seller.id, reservation_id=resv.id, verification_code=resv.verification_code,
    )
    assert done.status == ReservationStatus.COMPLETED
    assert ensure_aware_utc(done.completed_at) == clock.base

    db.refresh(listing)
    assert listing.status == ListingStatus.COMPLETED
    assert listing.quantity_available == 0

    # 종료 상태는 바뀌지 않는다
    with pytest.raises(crud.ConflictError):
        crud.mark_no_show(db, seller_id=seller.id, reservation_id=resv.id)
    with pytest.raises(crud.ConflictError):
        crud.cancel_reservation(db, reservation_id=resv.id, buyer_id=buyer.id)


def test_no_show_returns_quantity(clock, db, listing, seller, buyer):
    resv = _confirmed(db, listing, buyer, qty=3)
    db.refresh(listing)
    assert listing.quantity_available == 7

    marked = crud.mark_no_show(db, seller_id=seller.id, reservation_id=resv.id)
    assert marked.status == ReservationStatus.NO_SHOW

    db.refresh(listing)
    assert listing.quantity_available == 10
    assert compute_reservation_phase(marked) == "NO_SHOW"


# ---------------------------------------------------------
# 조회 / 감사
# ---------------------------------------------------------
def test_queries(clock, db, make_listing, seller, buyer, buyer2):
    listing = make_listing()
    a = crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer.id, quantity=1)
    b = _confirmed(db, listing, buyer)
    c = crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer2.id, quantity=1)

    assert [r.id for r in crud.list_pending_payments(db, buyer_id=buyer.id)] == [a.id]
    assert [r.id for r in crud.list_pending_pickups(db, seller_id=seller.id)] == [b.id]
    assert {r.id for r in crud.list_buyer_reservations(db, buyer_id=buyer.id)} == {a.id, b.id}
    assert [r.id for r in crud.list_buyer_reservations(
        db, buyer_id=buyer.id, status=ReservationStatus.CONFIRMED)] == [b.id]

    page1 = crud.search_reservations(db, listing_id=listing.id, limit=2)
    assert [r.id for r in page1] == [c.id, b.id]
    page2 = crud.search_reservations(db, listing_id=listing.id, after_id=page1[-1].id, limit=2)
    assert [r.id for r in page2] == [a.id]

    with pytest.raises(crud.ForbiddenError):
        crud.get_reservation_for_party(db, a.id, buyer2.id)
    assert crud.get_reservation_for_party(db, a.id, seller.id).id == a.id

    # 만료 시각이 지나면 결제 대기 목록에서 빠진다
    clock.advance(31)
    assert crud.list_pending_payments(db, buyer_id=buyer.id) == []


def test_inventory_audit_matches_live_holds(clock, db, listing, seller, buyer, buyer2):
    a = _confirmed(db, listing, buyer, qty=2)
    crud.complete_pickup(db, seller_id=seller.id, reservation_id=a.id)
    b = crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer2.id, quantity=3)
    crud.cancel_reservation(db, reservation_id=b.id, buyer_id=buyer2.id)
    c = _confirmed(db, listing, buyer2, qty=1)
    crud.mark_no_show(db, seller_id=seller.id, reservation_id=c.id)
    crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer.id, quantity=4)

    audit = crud.audit_listing_inventory(db, listing.id)
    assert audit["ok"] is True, audit["hints"]
    assert audit["stats"]["quantity_available"] == 10 - 2 - 4
    assert audit["stats"]["completed_qty"] == 2
    assert audit["stats"]["pending_qty"] == 4
    assert audit["stats"]["cancelled_qty"] == 3
    assert audit["stats"]["no_show_qty"] == 1


def test_every_transition_is_logged(clock, db, listing, seller, buyer):
    resv = _confirmed(db, listing, buyer)
    crud.complete_pickup(db, seller_id=seller.id, reservation_id=resv.id)

    types = [e.event_type for e in crud.list_events(db, reservation_id=resv.id)]
    assert types == [
        EventType.RESERVATION_CREATED,
        EventType.RESERVATION_CONFIRMED,
        EventType.RESERVATION_COMPLETED,
    ]


def test_phase_and_countdown(clock, db, listing, buyer):
    resv = crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer.id, quantity=1)
    assert compute_reservation_phase(resv) == "PENDING"
    assert seconds_until_expiry(resv) == 30 * 60

    clock.advance(10)
    assert seconds_until_expiry(resv) == 20 * 60

    clock.advance(40)
    assert compute_reservation_phase(resv) == "PENDING_EXPIRED"
    assert seconds_until_expiry(resv) == 0
