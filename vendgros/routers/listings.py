# vendgros/routers/listings.py
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Body, Depends, HTTPException, Path, status
from sqlalchemy.orm import Session

from vendgros import crud, schemas
from vendgros.database import get_db
from vendgros.models import User
from vendgros.routers.reservations import to_reservation_out
from vendgros.security.auth import get_current_user

router = APIRouter(prefix="/listings", tags=["listings"])


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


@router.post("", response_model=schemas.ListingOut, status_code=status.HTTP_201_CREATED)
def listings_create(
    body: schemas.ListingCreate = Body(...),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        return crud.create_listing(db, seller_id=user.id, **body.model_dump())
    except Exception as e:
        _translate_error(e)


@router.post("/{listing_id}/publish", response_model=schemas.ListingOut)
def listings_publish(
    listing_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        return crud.publish_listing(db, listing_id=listing_id, seller_id=user.id)
    except Exception as e:
        _translate_error(e)


@router.get("/{listing_id}", response_model=schemas.ListingOut)
def listings_get(listing_id: int = Path(..., ge=1), db: Session = Depends(get_db)):
    try:
        return crud.get_listing(db, listing_id)
    except Exception as e:
        _translate_error(e)


@router.get("/{listing_id}/reservations", response_model=List[schemas.ReservationOut])
def listings_reservations(
    listing_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """판매자 본인 리스팅의 예약 목록."""
    try:
        rows = crud.list_listing_reservations(db, listing_id=listing_id, seller_id=user.id)
        return [to_reservation_out(r, viewer_id=user.id) for r in rows]
    except Exception as e:
        _translate_error(e)


@router.get("/{listing_id}/inventory-audit", response_model=schemas.InventoryAuditOut)
def listings_inventory_audit(
    listing_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        listing = crud.get_listing(db, listing_id)
        if listing.seller_id != user.id and not user.is_admin:
            raise crud.ForbiddenError("not owned by seller")
        return crud.audit_listing_inventory(db, listing_id)
    except Exception as e:
        _translate_error(e)
