# vendgros/pg/types.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


# 결제 인텐트 상태 (processor 기준 문자열 그대로 사용)
INTENT_REQUIRES_PAYMENT_METHOD = "requires_payment_method"
INTENT_PROCESSING = "processing"
INTENT_SUCCEEDED = "succeeded"
INTENT_CANCELED = "canceled"

INTENT_STATUSES = (
    INTENT_REQUIRES_PAYMENT_METHOD,
    INTENT_PROCESSING,
    INTENT_SUCCEEDED,
    INTENT_CANCELED,
)


@dataclass
class PgIntentRequest:
    """
    예약금 결제 인텐트 생성 요청.

    amount 는 최소 화폐 단위(센트).
    """
    amount: int
    currency: str
    reservation_id: int
    listing_id: int
    buyer_id: int
    seller_id: int
    description: Optional[str] = None
    receipt_email: Optional[str] = None


@dataclass
class PgIntent:
    """
    결제 인텐트를 우리 내부 표현으로 통일한 모델.
    """
    id: str
    client_secret: str
    amount: int
    currency: str
    status: str
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == INTENT_SUCCEEDED

    @property
    def reservation_id(self) -> Optional[int]:
        raw = self.metadata.get("reservation_id")
        if raw is None or str(raw).strip() == "":
            return None
        return int(raw)


@dataclass
class PgRefundRequest:
    payment_intent_id: str
    reservation_id: int
    reason: Optional[str] = None


@dataclass
class PgRefundResult:
    success: bool

    # processor 측 환불 ID / 상태
    refund_id: Optional[str]
    pg_status: str

    # 실제 환불된 금액 (센트)
    amount: int

    pg_raw: Optional[dict[str, Any]] = None
    pg_error_code: Optional[str] = None
    pg_error_message: Optional[str] = None
