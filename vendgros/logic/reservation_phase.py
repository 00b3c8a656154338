# vendgros/logic/reservation_phase.py

from __future__ import annotations

from datetime import datetime
from typing import Optional

from vendgros.core.time_policy import ensure_aware_utc, now_utc
from vendgros.models import Reservation, ReservationStatus


def compute_reservation_phase(resv: Reservation, *, now: Optional[datetime] = None) -> str:
    """
    Reservation 상태를 프론트에서 쓰기 쉬운 '단계' 문자열로.

    - PENDING
      - 아직 만료 전: "PENDING"
      - 만료 시각은 지났지만 스윕 전: "PENDING_EXPIRED"
    - CONFIRMED / COMPLETED / NO_SHOW / CANCELLED: 그대로
    """
    if now is None:
        now = now_utc()

    status = resv.status

    if status == ReservationStatus.PENDING:
        expires_at = ensure_aware_utc(resv.expires_at)
        if expires_at is not None and expires_at < ensure_aware_utc(now):
            # cron/워커가 아직 CANCELLED 로 바꾸기 전
            return "PENDING_EXPIRED"
        return "PENDING"

    if status in (
        ReservationStatus.CONFIRMED,
        ReservationStatus.COMPLETED,
        ReservationStatus.NO_SHOW,
        ReservationStatus.CANCELLED,
    ):
        return status.value

    return str(status)


def seconds_until_expiry(resv: Reservation, *, now: Optional[datetime] = None) -> Optional[int]:
    """PENDING 예약의 남은 결제 시간(초). PENDING 이 아니면 None, 지났으면 0."""
    if resv.status != ReservationStatus.PENDING or resv.expires_at is None:
        return None
    now = ensure_aware_utc(now or now_utc())
    remaining = (ensure_aware_utc(resv.expires_at) - now).total_seconds()
    return max(0, int(remaining))
