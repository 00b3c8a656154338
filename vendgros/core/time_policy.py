# vendgros/core/time_policy.py
# 시간 유틸 단일 창구
# - 모든 반환값은 timezone-aware UTC(datetime)
# - 테스트에서는 set_now_utc_for_testing() 으로 현재시각 고정

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

UTC = timezone.utc

# 테스트/진단에서 현재시각을 고정하기 위한 오버라이드 저장소
_TEST_NOW_UTC: Optional[datetime] = None


def set_now_utc_for_testing(dt: Optional[datetime]) -> None:
    """
    dt가 None이면 오버라이드 해제. dt가 naive면 UTC로 간주.
    """
    global _TEST_NOW_UTC
    if dt is None:
        _TEST_NOW_UTC = None
    else:
        _TEST_NOW_UTC = dt if dt.tzinfo else dt.replace(tzinfo=UTC)


def is_now_overridden() -> bool:
    return _TEST_NOW_UTC is not None


def now_utc() -> datetime:
    if _TEST_NOW_UTC is not None:
        return _TEST_NOW_UTC
    return datetime.now(UTC)


def ensure_aware_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    DB에서 나온 datetime 을 UTC aware 로 변환.

    - None 이면 None
    - naive datetime 이면 UTC 로 가정 (SQLite 는 tzinfo 를 버린다)
    - 이미 tz 가 있으면 UTC 로 변환
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def add_minutes(dt: datetime, minutes: int) -> datetime:
    return ensure_aware_utc(dt) + timedelta(minutes=minutes)


def is_past(dt: Optional[datetime], *, now: Optional[datetime] = None) -> bool:
    if dt is None:
        return False
    return ensure_aware_utc(dt) < (now or now_utc())


def to_epoch_seconds(dt: datetime) -> int:
    return int(ensure_aware_utc(dt).timestamp())


__all__ = [
    "UTC",
    "set_now_utc_for_testing", "is_now_overridden",
    "now_utc", "ensure_aware_utc",
    "add_minutes", "is_past", "to_epoch_seconds",
]
