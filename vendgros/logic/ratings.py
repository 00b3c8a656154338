# vendgros/logic/ratings.py
"""
블라인드 상호 평가.

- 픽업 완료(COMPLETED) 후 rating.window_days 이내에만 제출/수정 가능
- 구매자가 판매자를 평가하면 AS_SELLER, 판매자가 구매자를 평가하면 AS_BUYER
- 양쪽 모두 제출해야 두 평가가 공개(is_visible)된다
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from vendgros import crud
from vendgros.core.time_policy import ensure_aware_utc, now_utc
from vendgros.errors import ConflictError, ValidationError
from vendgros.models import EventType, Rating, RatingType, Reservation, ReservationStatus
from vendgros.policy.runtime import get_policy

logger = logging.getLogger(__name__)


def _rating_deadline(resv: Reservation) -> Optional[datetime]:
    completed_at = ensure_aware_utc(resv.completed_at)
    if completed_at is None:
        return None
    return completed_at + timedelta(days=get_policy().rating.window_days)


def _why_cannot_rate(resv: Reservation, now: datetime) -> Optional[str]:
    if resv.status != ReservationStatus.COMPLETED:
        return "Reservation not completed yet"
    deadline = _rating_deadline(resv)
    if deadline is None or now > deadline:
        return "Rating window has expired"
    return None


def submit_rating(
    db: Session,
    *,
    reservation_id: int,
    rater_id: int,
    score: int,
    comment: Optional[str] = None,
) -> Dict[str, Any]:
    policy = get_policy().rating
    if not (policy.min_score <= score <= policy.max_score):
        raise ValidationError(f"score must be between {policy.min_score} and {policy.max_score}")
    if comment is not None and len(comment) > policy.comment_max_length:
        raise ValidationError(f"comment too long (max {policy.comment_max_length})")

    resv = crud.get_reservation_for_party(db, reservation_id, rater_id)
    reason = _why_cannot_rate(resv, now_utc())
    if reason:
        raise ConflictError(reason)

    is_buyer = resv.buyer_id == rater_id
    rated_id = resv.listing.seller_id if is_buyer else resv.buyer_id
    rating_type = RatingType.AS_SELLER if is_buyer else RatingType.AS_BUYER

    now = now_utc()
    existing = (
        db.query(Rating)
        .filter(Rating.reservation_id == reservation_id, Rating.rater_id == rater_id)
        .first()
    )
    if existing:
        existing.score = score
        existing.comment = comment
        existing.updated_at = now
        rating = existing
    else:
        rating = Rating(
            reservation_id=reservation_id,
            rater_id=rater_id,
            rated_id=rated_id,
            rating_type=rating_type,
            score=score,
            comment=comment,
            is_visible=False,
            created_at=now,
            updated_at=now,
        )
    db.add(rating)
    db.flush()

    other = (
        db.query(Rating)
        .filter(Rating.reservation_id == reservation_id, Rating.rater_id == rated_id)
        .first()
    )
    both_rated = other is not None
    if both_rated:
        rating.is_visible = True
        other.is_visible = True
        db.add(other)

    crud._log_event(
        db,
        event_type=EventType.RATING_SUBMITTED,
        actor_type="buyer" if is_buyer else "seller",
        actor_id=rater_id,
        listing_id=resv.listing_id,
        reservation_id=reservation_id,
        meta={"score": score, "updated": existing is not None},
    )
    db.commit()
    db.refresh(rating)

    return {
        "success": True,
        "rating_id": rating.id,
        "both_rated": both_rated,
        "was_update": existing is not None,
    }


def can_rate(db: Session, *, reservation_id: int, user_id: int) -> Dict[str, Any]:
    resv = crud.get_reservation_for_party(db, reservation_id, user_id)
    reason = _why_cannot_rate(resv, now_utc())
    if reason:
        return {"can_rate": False, "reason": reason}

    existing = (
        db.query(Rating)
        .filter(Rating.reservation_id == reservation_id, Rating.rater_id == user_id)
        .first()
    )
    return {
        "can_rate": True,
        "reason": None,
        "existing_rating": (
            {"id": existing.id, "score": existing.score, "comment": existing.comment}
            if existing else None
        ),
    }


def _rating_dict(r: Rating) -> Dict[str, Any]:
    return {
        "id": r.id,
        "score": r.score,
        "comment": r.comment,
        "rating_type": r.rating_type.value,
        "created_at": r.created_at,
    }


def get_ratings_for_reservation(db: Session, *, reservation_id: int, user_id: int) -> Dict[str, Any]:
    """본인 평가는 항상, 상대 평가는 양쪽 모두 제출했을 때만."""
    resv = crud.get_reservation_for_party(db, reservation_id, user_id)
    ratings = db.query(Rating).filter(Rating.reservation_id == reservation_id).all()

    own = next((r for r in ratings if r.rater_id == user_id), None)
    other = next((r for r in ratings if r.rater_id != user_id), None)
    both_rated = own is not None and other is not None

    return {
        "both_rated": both_rated,
        "can_rate": _why_cannot_rate(resv, now_utc()) is None,
        "own_rating": _rating_dict(own) if own else None,
        "other_rating": _rating_dict(other) if both_rated else None,
    }


def list_user_ratings(
    db: Session,
    *,
    user_id: int,
    rating_type: Optional[RatingType] = None,
    limit: int = 20,
    offset: int = 0,
) -> Dict[str, Any]:
    q = db.query(Rating).filter(Rating.rated_id == user_id, Rating.is_visible.is_(True))
    if rating_type is not None:
        q = q.filter(Rating.rating_type == rating_type)

    total = q.count()
    rows = q.order_by(Rating.created_at.desc(), Rating.id.desc()).offset(offset).limit(limit).all()
    return {
        "ratings": [_rating_dict(r) for r in rows],
        "total": total,
        "has_more": offset + limit < total,
    }


def get_user_rating_summary(db: Session, *, user_id: int) -> Dict[str, Any]:
    crud.get_user(db, user_id)

    def _agg(rating_type: Optional[RatingType]):
        q = db.query(func.avg(Rating.score), func.count(Rating.id)).filter(
            Rating.rated_id == user_id,
            Rating.is_visible.is_(True),
        )
        if rating_type is not None:
            q = q.filter(Rating.rating_type == rating_type)
        avg, cnt = q.one()
        return (round(float(avg), 2) if avg is not None else None), int(cnt or 0)

    avg, count = _agg(None)
    seller_avg, seller_count = _agg(RatingType.AS_SELLER)
    buyer_avg, buyer_count = _agg(RatingType.AS_BUYER)
    return {
        "user_id": user_id,
        "average": avg,
        "count": count,
        "as_seller": {"average": seller_avg, "count": seller_count},
        "as_buyer": {"average": buyer_avg, "count": buyer_count},
    }
