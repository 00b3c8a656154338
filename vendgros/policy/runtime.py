# vendgros/policy/runtime.py
from __future__ import annotations

import logging
from functools import lru_cache

from vendgros.policy.loader import load_policy_yaml
from vendgros.policy.schema import PolicyBundle

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_policy() -> PolicyBundle:
    """
    마켓 정책(예약금 비율, 결제 대기 시간, 평가 기간 ...) 접근자.
    YAML 은 처음 한 번만 읽고 이후엔 캐시.
    """
    bundle = load_policy_yaml()
    logger.info(
        "policy loaded: deposit_rate=%s hold=%smin rating_window=%sd",
        bundle.reservation.deposit_rate,
        bundle.reservation.payment_hold_minutes,
        bundle.rating.window_days,
    )
    return bundle


def reload_policy_cache() -> PolicyBundle:
    """VENDGROS_POLICY_PATH 를 바꾼 뒤 (테스트/운영) 다시 읽을 때."""
    get_policy.cache_clear()  # type: ignore[attr-defined]
    return get_policy()
