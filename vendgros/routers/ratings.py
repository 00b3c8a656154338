# vendgros/routers/ratings.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, status
from sqlalchemy.orm import Session

from vendgros import crud, schemas
from vendgros.database import get_db
from vendgros.logic import ratings as rating_logic
from vendgros.models import RatingType, User
from vendgros.security.auth import get_current_user

router = APIRouter(prefix="/ratings", tags=["ratings"])


def _translate_error(exc: Exception) -> None:
    if isinstance(exc, crud.NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, crud.ForbiddenError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, crud.ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, crud.ValidationError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    raise exc


@router.post("/reservations/{reservation_id}", response_model=schemas.RatingSubmitOut)
def ratings_submit(
    reservation_id: int = Path(..., ge=1),
    body: schemas.RatingIn = Body(...),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        return rating_logic.submit_rating(
            db,
            reservation_id=reservation_id,
            rater_id=user.id,
            score=body.score,
            comment=body.comment,
        )
    except Exception as e:
        _translate_error(e)


@router.get("/reservations/{reservation_id}", response_model=schemas.ReservationRatingsOut)
def ratings_for_reservation(
    reservation_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        return rating_logic.get_ratings_for_reservation(db, reservation_id=reservation_id, user_id=user.id)
    except Exception as e:
        _translate_error(e)


@router.get("/reservations/{reservation_id}/can-rate")
def ratings_can_rate(
    reservation_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        return rating_logic.can_rate(db, reservation_id=reservation_id, user_id=user.id)
    except Exception as e:
        _translate_error(e)


@router.get("/users/{user_id}", response_model=schemas.UserRatingsOut)
def ratings_for_user(
    user_id: int = Path(..., ge=1),
    rating_type: Optional[RatingType] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    """공개: 양쪽 모두 평가한(공개된) 평가만."""
    return rating_logic.list_user_ratings(
        db, user_id=user_id, rating_type=rating_type, limit=limit, offset=offset,
    )


@router.get("/users/{user_id}/summary")
def ratings_summary(user_id: int = Path(..., ge=1), db: Session = Depends(get_db)):
    try:
        return rating_logic.get_user_rating_summary(db, user_id=user_id)
    except Exception as e:
        _translate_error(e)
