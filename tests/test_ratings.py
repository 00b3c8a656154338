# tests/test_ratings.py
import pytest

from vendgros import crud
from vendgros.logic import ratings as rating_logic
from vendgros.models import RatingType


@pytest.fixture()
def completed(db, listing, seller, buyer):
    resv = crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer.id, quantity=2)
    crud.confirm_reservation(db, reservation_id=resv.id, payment_intent_id="pi_rate")
    return crud.complete_pickup(db, seller_id=seller.id, reservation_id=resv.id)


def test_rating_requires_completed_pickup(db, listing, buyer):
    resv = crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer.id, quantity=1)

    with pytest.raises(crud.ConflictError, match="not completed"):
        rating_logic.submit_rating(db, reservation_id=resv.id, rater_id=buyer.id, score=5)

    assert rating_logic.can_rate(db, reservation_id=resv.id, user_id=buyer.id) == {
        "can_rate": False,
        "reason": "Reservation not completed yet",
    }


def test_score_and_party_rules(db, completed, buyer, buyer2):
    with pytest.raises(crud.ValidationError):
        rating_logic.submit_rating(db, reservation_id=completed.id, rater_id=buyer.id, score=0)
    with pytest.raises(crud.ValidationError):
        rating_logic.submit_rating(db, reservation_id=completed.id, rater_id=buyer.id, score=6)
    with pytest.raises(crud.ValidationError):
        rating_logic.submit_rating(db, reservation_id=completed.id, rater_id=buyer.id, score=4, comment="x" * 501)
    with pytest.raises(crud.ForbiddenError):
        rating_logic.submit_rating(db, reservation_id=completed.id, rater_id=buyer2.id, score=4)


def test_ratings_stay_hidden_until_both_sides_rate(db, completed, seller, buyer):
    first = rating_logic.submit_rating(
        db, reservation_id=completed.id, rater_id=buyer.id, score=5, comment="great apples",
    )
    assert first["both_rated"] is False
    assert first["was_update"] is False

    # 판매자는 아직 구매자 평가를 볼 수 없다
    seller_view = rating_logic.get_ratings_for_reservation(db, reservation_id=completed.id, user_id=seller.id)
    assert seller_view["own_rating"] is None
    assert seller_view["other_rating"] is None
    assert rating_logic.list_user_ratings(db, user_id=seller.id)["total"] == 0

    second = rating_logic.submit_rating(db, reservation_id=completed.id, rater_id=seller.id, score=4)
    assert second["both_rated"] is True

    seller_view = rating_logic.get_ratings_for_reservation(db, reservation_id=completed.id, user_id=seller.id)
    assert seller_view["both_rated"] is True
    assert seller_view["other_rating"]["score"] == 5
    assert seller_view["other_rating"]["rating_type"] == "AS_SELLER"

    seller_ratings = rating_logic.list_user_ratings(db, user_id=seller.id)
    assert seller_ratings["total"] == 1
    assert seller_ratings["ratings"][0]["comment"] == "great apples"

    buyer_ratings = rating_logic.list_user_ratings(db, user_id=buyer.id, rating_type=RatingType.AS_BUYER)
    assert [r["score"] for r in buyer_ratings["ratings"]] == [4]


def test_resubmission_updates_in_place(db, completed, buyer):
    first = rating_logic.submit_rating(db, reservation_id=completed.id, rater_id=buyer.id, score=2)
    again = rating_logic.submit_rating(db, reservation_id=completed.id, rater_id=buyer.id, score=3, comment="ok")

    assert again["rating_id"] == first["rating_id"]
    assert again["was_update"] is True

    check = rating_logic.can_rate(db, reservation_id=completed.id, user_id=buyer.id)
    assert check["can_rate"] is True
    assert check["existing_rating"] == {"id": first["rating_id"], "score": 3, "comment": "ok"}


def test_rating_window_closes(clock, db, completed, buyer):
    clock.advance(days=7)
    assert rating_logic.can_rate(db, reservation_id=completed.id, user_id=buyer.id)["can_rate"] is True

    clock.advance(days=7, minutes=1)
    with pytest.raises(crud.ConflictError, match="window has expired"):
        rating_logic.submit_rating(db, reservation_id=completed.id, rater_id=buyer.id, score=5)


def test_summary_splits_by_role(db, make_listing, seller, buyer, buyer2):
    listing = make_listing(quantity_total=20)

    def _complete(b, qty=1):
        r = crud.create_reservation(db, listing_id=listing.id, buyer_id=b.id, quantity=qty)
        crud.confirm_reservation(db, reservation_id=r.id, payment_intent_id=f"pi_{r.id}")
        return crud.complete_pickup(db, seller_id=seller.id, reservation_id=r.id)

    r1 = _complete(buyer)
    r2 = _complete(buyer2)
    rating_logic.submit_rating(db, reservation_id=r1.id, rater_id=buyer.id, score=5)
    rating_logic.submit_rating(db, reservation_id=r1.id, rater_id=seller.id, score=3)
    rating_logic.submit_rating(db, reservation_id=r2.id, rater_id=buyer2.id, score=4)
    rating_logic.submit_rating(db, reservation_id=r2.id, rater_id=seller.id, score=5)

    summary = rating_logic.get_user_rating_summary(db, user_id=seller.id)
    assert summary["count"] == 2
    assert summary["average"] == 4.5
    assert summary["as_seller"] == {"average": 4.5, "count": 2}
    assert summary["as_buyer"] == {"average": None, "count": 0}

    with pytest.raises(crud.NotFoundError):
        rating_logic.get_user_rating_summary(db, user_id=9999)


def test_ratings_over_http(client, completed, seller, buyer, headers_for):
    r = client.post(
        f"/ratings/reservations/{completed.id}",
        json={"score": 6},
        headers=headers_for(buyer),
    )
    assert r.status_code == 422

    r = client.post(
        f"/ratings/reservations/{completed.id}",
        json={"score": 5, "comment": "smooth pickup"},
        headers=headers_for(buyer),
    )
    assert r.status_code == 200, r.text
    assert r.json()["both_rated"] is False

    r = client.get(f"/ratings/reservations/{completed.id}/can-rate", headers=headers_for(seller))
    assert r.json()["can_rate"] is True

    client.post(f"/ratings/reservations/{completed.id}", json={"score": 5}, headers=headers_for(seller))

    r = client.get(f"/ratings/users/{seller.id}")
    assert r.status_code == 200
    assert r.json()["total"] == 1

    r = client.get(f"/ratings/users/{seller.id}/summary")
    assert r.json()["average"] == 5.0
