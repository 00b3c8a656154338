# vendgros/pg/client.py

from __future__ import annotations

import logging
import secrets
import threading
from typing import Dict, Optional

from vendgros.errors import PaymentGatewayError
from .types import (
    INTENT_CANCELED,
    INTENT_REQUIRES_PAYMENT_METHOD,
    INTENT_STATUSES,
    INTENT_SUCCEEDED,
    PgIntent,
    PgIntentRequest,
    PgRefundRequest,
    PgRefundResult,
)

logger = logging.getLogger(__name__)

# 프로세스 내 인텐트 저장소.
# 실제 processor 연동 시 이 파일의 함수 본문만 SDK 호출로 교체하면 되고,
# payments 로직 쪽은 PgIntent / PgRefundResult 만 알면 된다.
_LOCK = threading.Lock()
_INTENTS: Dict[str, PgIntent] = {}
_REFUNDED: Dict[str, str] = {}


def _new_id(prefix: str) -> str:
    return f"{prefix}_{secrets.token_hex(12)}"


def create_payment_intent(req: PgIntentRequest) -> PgIntent:
    if req.amount <= 0:
        raise PaymentGatewayError(f"amount must be > 0 (got {req.amount})")

    intent_id = _new_id("pi")
    intent = PgIntent(
        id=intent_id,
        client_secret=f"{intent_id}_secret_{secrets.token_hex(8)}",
        amount=req.amount,
        currency=req.currency,
        status=INTENT_REQUIRES_PAYMENT_METHOD,
        metadata={
            "reservation_id": str(req.reservation_id),
            "listing_id": str(req.listing_id),
            "buyer_id": str(req.buyer_id),
            "seller_id": str(req.seller_id),
        },
    )
    with _LOCK:
        _INTENTS[intent_id] = intent

    logger.debug("[pg] intent created: %s amount=%s %s", intent_id, req.amount, req.currency)
    return intent


def retrieve_payment_intent(payment_intent_id: str) -> PgIntent:
    with _LOCK:
        intent = _INTENTS.get(payment_intent_id)
    if intent is None:
        raise PaymentGatewayError(f"No such payment_intent: {payment_intent_id}")
    return intent


def mark_intent_status(payment_intent_id: str, status: str) -> PgIntent:
    """
    인텐트 상태 전환 (processor 측 이벤트 재현용).
    """
    if status not in INTENT_STATUSES:
        raise PaymentGatewayError(f"unknown intent status: {status}")
    with _LOCK:
        intent = _INTENTS.get(payment_intent_id)
        if intent is None:
            raise PaymentGatewayError(f"No such payment_intent: {payment_intent_id}")
        intent.status = status
    logger.debug("[pg] intent %s -> %s", payment_intent_id, status)
    return intent


def find_refund(payment_intent_id: str) -> Optional[str]:
    """이미 환불된 인텐트면 refund id, 아니면 None."""
    with _LOCK:
        return _REFUNDED.get(payment_intent_id)


def create_refund(req: PgRefundRequest) -> PgRefundResult:
    with _LOCK:
        intent = _INTENTS.get(req.payment_intent_id)
        if intent is None:
            raise PaymentGatewayError(f"No such payment_intent: {req.payment_intent_id}")

        if req.payment_intent_id in _REFUNDED:
            raise PaymentGatewayError(f"payment_intent already refunded: {req.payment_intent_id}")

        if intent.status != INTENT_SUCCEEDED:
            # 결제 완료 전이면 환불 대신 인텐트 취소
            intent.status = INTENT_CANCELED
            return PgRefundResult(
                success=True,
                refund_id=None,
                pg_status="canceled",
                amount=0,
                pg_raw={"payment_intent": intent.id, "canceled": True},
            )

        refund_id = _new_id("re")
        _REFUNDED[req.payment_intent_id] = refund_id

    logger.debug("[pg] refund %s for %s (%s)", refund_id, req.payment_intent_id, req.reason)
    return PgRefundResult(
        success=True,
        refund_id=refund_id,
        pg_status="succeeded",
        amount=intent.amount,
        pg_raw={"payment_intent": intent.id, "reservation_id": req.reservation_id},
    )


def reset_gateway() -> None:
    with _LOCK:
        _INTENTS.clear()
        _REFUNDED.clear()
