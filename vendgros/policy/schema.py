from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple


@dataclass(frozen=True)
class ReservationPolicy:
    """예약/결제 홀드 정책."""

    # 예약금 비율 (rate: 0~1, 예: 0.05 = 5%)
    deposit_rate: float

    # 결제 대기 시간 (분). 이 시간이 지나면 PENDING → CANCELLED
    payment_hold_minutes: int

    currency: str = "cad"
    verification_code_length: int = 6
    worker_idle_seconds: int = 60


@dataclass(frozen=True)
class RatingPolicy:
    window_days: int
    min_score: int = 1
    max_score: int = 5
    comment_max_length: int = 500


@dataclass(frozen=True)
class ChatPolicy:
    allowed_statuses: Tuple[str, ...] = ("CONFIRMED", "COMPLETED")


@dataclass(frozen=True)
class ImpersonationPolicy:
    cookie_name: str = "vg_impersonation"
    token_expiry_hours: int = 1

    @property
    def token_expiry_seconds(self) -> int:
        return self.token_expiry_hours * 60 * 60


@dataclass(frozen=True)
class PolicyBundle:
    reservation: ReservationPolicy
    rating: RatingPolicy
    chat: ChatPolicy = field(default_factory=ChatPolicy)
    impersonation: ImpersonationPolicy = field(default_factory=ImpersonationPolicy)
