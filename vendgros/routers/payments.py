# vendgros/routers/payments.py
from __future__ import annotations

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Path, status
from sqlalchemy.orm import Session

from vendgros import crud, schemas
from vendgros.config import settings
from vendgros.database import get_db
from vendgros.errors import PaymentGatewayError
from vendgros.logic import payments as payment_logic
from vendgros.models import User
from vendgros.security.auth import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


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
    raise exc


# -------------------
# 예약금 결제 인텐트 생성
# -------------------
@router.post("/deposit", response_model=schemas.DepositPaymentOut)
def payments_create_deposit(
    body: schemas.DepositPaymentIn = Body(...),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        return payment_logic.create_deposit_payment(db, reservation_id=body.reservation_id, buyer_id=user.id)
    except Exception as e:
        _translate_error(e)


# -------------------
# 결제 완료 확인 (클라이언트 폴링)
# -------------------
@router.post("/verify", response_model=schemas.VerifyPaymentOut)
def payments_verify(
    body: schemas.VerifyPaymentIn = Body(...),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        return payment_logic.verify_payment(db, payment_intent_id=body.payment_intent_id, buyer_id=user.id)
    except Exception as e:
        _translate_error(e)


@router.get("/status/{reservation_id}", response_model=schemas.PaymentStatusOut)
def payments_status(
    reservation_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        return payment_logic.get_payment_status(db, reservation_id=reservation_id, user_id=user.id)
    except Exception as e:
        _translate_error(e)


# -------------------
# processor 웹훅
# -------------------
def _check_webhook_secret(provided: Optional[str]) -> None:
    expected = settings.PAYMENT_WEBHOOK_SECRET
    if not expected:
        logger.error("PAYMENT_WEBHOOK_SECRET is not configured")
        raise HTTPException(status_code=500, detail="Webhook secret not configured")
    if not provided or not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("webhook rejected: bad secret")
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post("/webhook")
def payments_webhook(
    body: schemas.WebhookEventIn = Body(...),
    x_webhook_secret: Optional[str] = Header(None, alias="X-Webhook-Secret"),
    db: Session = Depends(get_db),
):
    _check_webhook_secret(x_webhook_secret)
    try:
        result = payment_logic.handle_payment_event(
            db,
            event_type=body.type,
            payment_intent_id=body.payment_intent_id,
        )
    except Exception as e:
        _translate_error(e)

    logger.info("webhook %s (%s): %s", body.type, body.payment_intent_id, result)
    return result
