# vendgros/routers/admin.py
# 관리자: 대리접속 / 예약 검색·환불 / 계정 상태 / 만료 스윕 수동 실행
from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, Request, Response, status
from sqlalchemy.orm import Session

from vendgros import crud, schemas
from vendgros.database import get_db
from vendgros.errors import ImpersonationConfigError, PaymentGatewayError
from vendgros.logic import impersonation_admin
from vendgros.logic import payments as payment_logic
from vendgros.models import ReservationStatus
from vendgros.routers.reservations import to_reservation_out
from vendgros.security.auth import AuthContext, get_auth_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


def _translate_error(exc: Exception) -> None:
    if isinstance(exc, crud.NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, crud.ForbiddenError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, crud.ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, crud.ValidationError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, PaymentGatewayError):
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    if isinstance(exc, ImpersonationConfigError):
        logger.error("impersonation misconfigured: %s", exc)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
    raise exc


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


# =========================================================
# 🕵️ 대리접속
# =========================================================
@router.post("/impersonation/start")
def admin_impersonation_start(
    request: Request,
    response: Response,
    body: schemas.ImpersonationStartIn = Body(...),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
):
    try:
        result = impersonation_admin.start_impersonation(
            db,
            real_user_id=ctx.real_user.id,
            state=ctx.impersonation,
            target_user_id=body.user_id,
            reason=body.reason,
            ip_address=_client_ip(request),
            user_agent=request.headers.get("user-agent"),
        )
    except Exception as e:
        _translate_error(e)

    response.set_cookie(**result["cookie"].as_set_cookie_kwargs())
    return {
        "success": True,
        "log_id": result["log_id"],
        "impersonated_user": result["impersonated_user"],
    }


@router.post("/impersonation/stop")
def admin_impersonation_stop(
    response: Response,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
):
    try:
        result = impersonation_admin.stop_impersonation(db, state=ctx.impersonation)
    except Exception as e:
        _translate_error(e)

    response.set_cookie(**result["cookie"].as_set_cookie_kwargs())
    return {"success": True}


@router.get("/impersonation/state")
def admin_impersonation_state(ctx: AuthContext = Depends(get_auth_context)):
    state = ctx.impersonation
    return {
        "is_impersonating": state.is_impersonating,
        "original_admin": state.original_admin,
        "impersonated_user": state.impersonated_user,
    }


@router.get("/impersonation/logs", response_model=schemas.ImpersonationLogsOut)
def admin_impersonation_logs(
    admin_id: Optional[int] = Query(None),
    impersonated_user_id: Optional[int] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
):
    try:
        return impersonation_admin.list_impersonation_logs(
            db,
            real_user_id=ctx.real_user.id,
            admin_id=admin_id,
            impersonated_user_id=impersonated_user_id,
            limit=limit,
            offset=offset,
        )
    except Exception as e:
        _translate_error(e)


# =========================================================
# 🧾 예약 관리
# =========================================================
@router.get("/reservations", response_model=List[schemas.ReservationOut])
def admin_reservations_search(
    listing_id: Optional[int] = Query(None),
    buyer_id: Optional[int] = Query(None),
    status_filter: Optional[ReservationStatus] = Query(None, alias="status"),
    after_id: Optional[int] = Query(None, description="커서: 이 id 보다 작은 것부터"),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
):
    try:
        crud.require_admin(db, ctx.real_user.id)
        rows = crud.search_reservations(
            db,
            listing_id=listing_id,
            buyer_id=buyer_id,
            status=status_filter,
            after_id=after_id,
            limit=limit,
        )
        return [to_reservation_out(r, viewer_id=None) for r in rows]
    except Exception as e:
        _translate_error(e)


@router.post("/reservations/{reservation_id}/refund")
def admin_reservations_refund(
    reservation_id: int = Path(..., ge=1),
    body: Optional[schemas.RefundIn] = Body(None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
):
    try:
        return payment_logic.refund_deposit(
            db,
            admin_id=ctx.real_user.id,
            reservation_id=reservation_id,
            reason=body.reason if body else None,
        )
    except Exception as e:
        _translate_error(e)


@router.post("/reservations/expire", response_model=schemas.ExpireSweepOut)
def admin_reservations_expire(
    listing_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
):
    try:
        crud.require_admin(db, ctx.real_user.id)
        result = crud.expire_reservations(db, listing_id=listing_id)
    except Exception as e:
        _translate_error(e)
    return {
        "found": result.found,
        "cancelled": result.cancelled,
        "failed": result.failed,
        "skipped": result.skipped,
        "details": result.details,
    }


# =========================================================
# 👥 계정 상태
# =========================================================
@router.post("/users/{user_id}/status", response_model=schemas.UserOut)
def admin_set_account_status(
    user_id: int = Path(..., ge=1),
    body: schemas.AccountStatusIn = Body(...),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
):
    try:
        crud.require_admin(db, ctx.real_user.id)
        return crud.set_account_status(db, user_id=user_id, status=body.status)
    except Exception as e:
        _translate_error(e)
