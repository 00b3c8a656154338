# vendgros/routers/reservations.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, status
from sqlalchemy.orm import Session

from vendgros import crud, schemas
from vendgros.database import get_db
from vendgros.logic.reservation_phase import compute_reservation_phase, seconds_until_expiry
from vendgros.models import Reservation, ReservationStatus, User
from vendgros.security.auth import get_current_user

router = APIRouter(prefix="/reservations", tags=["reservations"])


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


def to_reservation_out(resv: Reservation, *, viewer_id: Optional[int]) -> schemas.ReservationOut:
    """
    ORM → 응답. 픽업 코드/QR 해시는 구매자 본인에게만 노출.
    """
    out = schemas.ReservationOut.model_validate(resv)
    is_buyer = viewer_id is not None and resv.buyer_id == viewer_id
    return out.model_copy(update={
        "verification_code": resv.verification_code if is_buyer else None,
        "qr_code_hash": resv.qr_code_hash if is_buyer else None,
        "phase": compute_reservation_phase(resv),
        "seconds_until_expiry": seconds_until_expiry(resv),
    })


# -------------------------------------------------------------------
# 예약 생성 (재고 홀드 + 결제 대기)
# -------------------------------------------------------------------
@router.post(
    "",
    response_model=schemas.ReservationOut,
    status_code=status.HTTP_201_CREATED,
    summary="예약 생성(PENDING): 재고 홀드, 결제 대기 시작",
)
def reservations_create(
    body: schemas.ReservationCreate = Body(...),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        resv = crud.create_reservation(
            db,
            listing_id=body.listing_id,
            buyer_id=user.id,
            quantity=body.quantity,
        )
        return to_reservation_out(resv, viewer_id=user.id)
    except Exception as e:
        _translate_error(e)


# -------------------------------------------------------------------
# 조회
# -------------------------------------------------------------------
@router.get("/mine", response_model=List[schemas.ReservationOut])
def reservations_mine(
    status_filter: Optional[ReservationStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    rows = crud.list_buyer_reservations(db, buyer_id=user.id, status=status_filter)
    return [to_reservation_out(r, viewer_id=user.id) for r in rows]


@router.get("/pending-payments", response_model=List[schemas.ReservationOut])
def reservations_pending_payments(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    rows = crud.list_pending_payments(db, buyer_id=user.id)
    return [to_reservation_out(r, viewer_id=user.id) for r in rows]


@router.get("/pending-pickups", response_model=List[schemas.ReservationOut])
def reservations_pending_pickups(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """판매자: 결제 완료, 픽업 대기 중인 예약."""
    rows = crud.list_pending_pickups(db, seller_id=user.id)
    return [to_reservation_out(r, viewer_id=user.id) for r in rows]


# -------------------------------------------------------------------
# 판매자: 픽업 코드 확인
# -------------------------------------------------------------------
@router.post("/verify-code", response_model=schemas.ReservationOut)
def reservations_verify_code(
    body: schemas.VerifyCodeIn = Body(...),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        resv = crud.verify_code(db, seller_id=user.id, verification_code=body.verification_code)
        return to_reservation_out(resv, viewer_id=user.id)
    except Exception as e:
        _translate_error(e)


@router.get("/{reservation_id}", response_model=schemas.ReservationOut)
def reservations_get(
    reservation_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        resv = crud.get_reservation_for_party(db, reservation_id, user.id)
        return to_reservation_out(resv, viewer_id=user.id)
    except Exception as e:
        _translate_error(e)


@router.get("/{reservation_id}/events", response_model=List[schemas.EventLogOut])
def reservations_events(
    reservation_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        crud.get_reservation_for_party(db, reservation_id, user.id)
        return crud.list_events(db, reservation_id=reservation_id)
    except Exception as e:
        _translate_error(e)


# -------------------------------------------------------------------
# 상태 전환
# -------------------------------------------------------------------
@router.post(
    "/{reservation_id}/cancel",
    response_model=schemas.ReservationOut,
    summary="예약 취소: 홀드 반환 (PENDING 전용)",
)
def reservations_cancel(
    reservation_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        resv = crud.cancel_reservation(db, reservation_id=reservation_id, buyer_id=user.id)
        return to_reservation_out(resv, viewer_id=user.id)
    except Exception as e:
        _translate_error(e)


@router.post(
    "/{reservation_id}/complete",
    response_model=schemas.ReservationOut,
    summary="픽업 완료 (CONFIRMED → COMPLETED)",
)
def reservations_complete(
    reservation_id: int = Path(..., ge=1),
    body: Optional[schemas.CompletePickupIn] = Body(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        resv = crud.complete_pickup(
            db,
            seller_id=user.id,
            reservation_id=reservation_id,
            verification_code=body.verification_code if body else None,
        )
        return to_reservation_out(resv, viewer_id=user.id)
    except Exception as e:
        _translate_error(e)


@router.post(
    "/{reservation_id}/no-show",
    response_model=schemas.ReservationOut,
    summary="노쇼 처리 (CONFIRMED → NO_SHOW, 물량 반환)",
)
def reservations_no_show(
    reservation_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        resv = crud.mark_no_show(db, seller_id=user.id, reservation_id=reservation_id)
        return to_reservation_out(resv, viewer_id=user.id)
    except Exception as e:
        _translate_error(e)
