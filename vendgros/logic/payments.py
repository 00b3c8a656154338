# vendgros/logic/payments.py
"""
예약금 결제 ↔ 예약 라이프사이클 연결.

두 경로가 같은 결과에 도달한다:
- 폴링: 클라이언트가 결제 후 verify_payment() 호출
- 웹훅: processor 이벤트가 handle_payment_event() 로 들어옴

어느 쪽이 먼저 오든 crud.confirm_reservation() 이 멱등이라 한 번만 확정된다.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from vendgros import crud
from vendgros.core.time_policy import is_past
from vendgros.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PaymentGatewayError,
    ValidationError,
)
from vendgros.models import EventType, Reservation, ReservationStatus
from vendgros.pg import client as pg
from vendgros.pg.types import PgIntent, PgIntentRequest, PgRefundRequest
from vendgros.policy.runtime import get_policy

logger = logging.getLogger(__name__)

EVENT_SUCCEEDED = "payment_intent.succeeded"
EVENT_FAILED = "payment_intent.payment_failed"
EVENT_CANCELED = "payment_intent.canceled"


def to_cents(amount: float) -> int:
    return int(round(float(amount) * 100))


# ---------------------------------------------------------
# 결제 인텐트 생성
# ---------------------------------------------------------
def create_deposit_payment(db: Session, *, reservation_id: int, buyer_id: int) -> Dict[str, Any]:
    resv = crud.get_reservation(db, reservation_id)
    if resv.buyer_id != buyer_id:
        raise ForbiddenError("Not authorized")
    if resv.status != ReservationStatus.PENDING:
        raise ConflictError("Reservation already processed")
    if is_past(resv.expires_at):
        raise ConflictError("Reservation payment window has expired")

    listing = resv.listing
    intent = pg.create_payment_intent(PgIntentRequest(
        amount=to_cents(resv.deposit_amount),
        currency=get_policy().reservation.currency,
        reservation_id=resv.id,
        listing_id=resv.listing_id,
        buyer_id=resv.buyer_id,
        seller_id=listing.seller_id,
        description=f"Vendgros deposit for: {listing.title}",
        receipt_email=resv.buyer.email if resv.buyer else None,
    ))

    resv.payment_intent_id = intent.id
    db.add(resv)
    crud._log_event(
        db,
        event_type=EventType.PAYMENT_INTENT_CREATED,
        actor_type="buyer",
        actor_id=buyer_id,
        listing_id=resv.listing_id,
        reservation_id=resv.id,
        amount=resv.deposit_amount,
        meta={"payment_intent_id": intent.id},
    )
    db.commit()

    logger.info("deposit intent %s created for reservation %s", intent.id, resv.id)
    return {
        "client_secret": intent.client_secret,
        "payment_intent_id": intent.id,
        "deposit_amount": resv.deposit_amount,
        "currency": intent.currency,
    }


# ---------------------------------------------------------
# 결제 후 처리
# ---------------------------------------------------------
def _reservation_for_intent(db: Session, intent: PgIntent) -> Reservation:
    reservation_id = intent.reservation_id
    if reservation_id is None:
        raise ValidationError("Invalid payment intent metadata")
    return crud.get_reservation(db, reservation_id)


def _refund_late_payment(db: Session, resv: Reservation, intent: PgIntent) -> Dict[str, Any]:
    """
    이미 CANCELLED(만료/취소)된 예약에 결제가 성공한 경우 → 예약금 자동 환불.
    재고는 이미 반환됐으므로 건드리지 않는다.
    같은 인텐트가 이미 환불됐으면(웹훅 재전송, 폴링 재시도, 관리자 환불) 다시 환불하지 않는다.
    """
    prior_refund_id = pg.find_refund(intent.id)
    if prior_refund_id is not None:
        logger.info("payment %s for reservation %s already refunded (%s)", intent.id, resv.id, prior_refund_id)
        return {"action": "already_refunded", "refund_id": prior_refund_id, "amount": intent.amount}

    result = pg.create_refund(PgRefundRequest(
        payment_intent_id=intent.id,
        reservation_id=resv.id,
        reason="reservation_cancelled_before_payment",
    ))
    crud._log_event(
        db,
        event_type=EventType.RESERVATION_REFUNDED,
        actor_type="system",
        listing_id=resv.listing_id,
        reservation_id=resv.id,
        amount=result.amount / 100,
        reason="late_payment",
        meta={"payment_intent_id": intent.id, "refund_id": result.refund_id},
    )
    db.commit()
    logger.warning(
        "payment %s arrived after reservation %s was cancelled (%s); refunded",
        intent.id, resv.id, resv.cancel_reason,
    )
    return {"action": "refunded_late_payment", "refund_id": result.refund_id, "amount": result.amount}


def verify_payment(db: Session, *, payment_intent_id: str, buyer_id: int) -> Dict[str, Any]:
    """폴링 경로: 결제 성공 확인 후 예약 확정."""
    intent = pg.retrieve_payment_intent(payment_intent_id)
    if not intent.succeeded:
        raise ValidationError("Payment not completed")

    resv = _reservation_for_intent(db, intent)
    if resv.buyer_id != buyer_id:
        raise ForbiddenError("Not authorized")

    if resv.status == ReservationStatus.CANCELLED:
        _refund_late_payment(db, resv, intent)
        raise ConflictError("Reservation was cancelled before payment completed; deposit refunded")

    result = crud.confirm_reservation(
        db,
        reservation_id=resv.id,
        payment_intent_id=intent.id,
        actor_type="buyer",
    )
    return {
        "success": True,
        "already_confirmed": result.already_confirmed,
        "reservation_id": result.reservation.id,
    }


def handle_payment_event(db: Session, *, event_type: str, payment_intent_id: str) -> Dict[str, Any]:
    """
    웹훅 경로. 재전송/중복 이벤트가 와도 같은 결과가 되도록 처리한다.
    """
    try:
        intent = pg.retrieve_payment_intent(payment_intent_id)
    except PaymentGatewayError as e:
        logger.warning("webhook for unknown payment intent %s: %s", payment_intent_id, e)
        return {"processed": False, "reason": "Unknown payment intent"}

    reservation_id = intent.reservation_id
    if reservation_id is None:
        return {"processed": False, "reason": "No reservation ID in metadata"}

    try:
        resv = crud.get_reservation(db, reservation_id)
    except NotFoundError:
        logger.warning("webhook %s: reservation %s not found", event_type, reservation_id)
        return {"processed": False, "reason": "Reservation not found"}

    if event_type == EVENT_SUCCEEDED:
        if resv.status == ReservationStatus.CANCELLED:
            return {"processed": True, **_refund_late_payment(db, resv, intent)}
        try:
            result = crud.confirm_reservation(
                db,
                reservation_id=resv.id,
                payment_intent_id=intent.id,
            )
        except ConflictError as e:
            logger.warning("webhook confirm rejected for reservation %s: %s", resv.id, e)
            return {"processed": False, "reason": str(e)}
        return {
            "processed": True,
            "action": "confirmed",
            "already_confirmed": result.already_confirmed,
        }

    if event_type == EVENT_FAILED:
        # 재시도는 구매자 몫. 상태는 그대로 PENDING (만료 스윕이 정리)
        crud._log_event(
            db,
            event_type=EventType.PAYMENT_FAILED,
            actor_type="system",
            listing_id=resv.listing_id,
            reservation_id=resv.id,
            meta={"payment_intent_id": intent.id},
        )
        db.commit()
        logger.info("payment failed for reservation %s (intent=%s)", resv.id, intent.id)
        return {"processed": True, "action": "logged"}

    if event_type == EVENT_CANCELED:
        if resv.status != ReservationStatus.PENDING:
            return {"processed": True, "action": "ignored", "status": resv.status.value}
        try:
            crud.cancel_reservation(
                db,
                reservation_id=resv.id,
                reason="payment_canceled",
                actor_type="system",
            )
        except ConflictError:
            # 그 사이 다른 경로가 상태를 바꿈
            db.rollback()
            return {"processed": True, "action": "ignored"}
        return {"processed": True, "action": "cancelled"}

    return {"processed": False, "reason": "Unhandled event type"}


def get_payment_status(db: Session, *, reservation_id: int, user_id: int) -> Dict[str, Any]:
    resv = crud.get_reservation_for_party(db, reservation_id, user_id)

    if not resv.payment_intent_id:
        return {"status": "no_payment", "deposit_paid": False}

    intent = pg.retrieve_payment_intent(resv.payment_intent_id)
    return {
        "status": intent.status,
        "deposit_paid": intent.succeeded,
        "amount": intent.amount / 100,
        "currency": intent.currency,
    }


# ---------------------------------------------------------
# 관리자 환불
# ---------------------------------------------------------
def refund_deposit(
    db: Session,
    *,
    admin_id: int,
    reservation_id: int,
    reason: Optional[str] = None,
) -> Dict[str, Any]:
    crud.require_admin(db, admin_id)

    resv = crud.get_reservation(db, reservation_id)
    if not resv.payment_intent_id:
        raise ValidationError("No payment to refund")
    payment_intent_id = resv.payment_intent_id

    # 조건부 전환을 먼저 (상태가 바뀌었으면 여기서 ConflictError, 환불 없음)
    resv = crud.cancel_paid_reservation(
        db,
        reservation_id=reservation_id,
        admin_id=admin_id,
        reason=reason or "Admin refund",
        commit=False,
    )
    try:
        refund = pg.create_refund(PgRefundRequest(
            payment_intent_id=payment_intent_id,
            reservation_id=resv.id,
            reason=reason or "Admin refund",
        ))
    except PaymentGatewayError:
        db.rollback()
        raise
    db.commit()

    logger.info("reservation %s refunded by admin %s (refund=%s)", resv.id, admin_id, refund.refund_id)
    return {
        "success": refund.success,
        "refund_id": refund.refund_id,
        "amount": refund.amount / 100,
        "pg_status": refund.pg_status,
        "reservation_id": resv.id,
        "status": resv.status.value,
    }
