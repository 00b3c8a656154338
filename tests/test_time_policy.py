# tests/test_time_policy.py
from datetime import datetime, timedelta, timezone

from vendgros.core.time_policy import (
    add_minutes,
    ensure_aware_utc,
    is_now_overridden,
    is_past,
    now_utc,
    set_now_utc_for_testing,
    to_epoch_seconds,
)


def test_override_and_release():
    fixed = datetime(2025, 3, 1, 12, 0)  # naive → UTC
    set_now_utc_for_testing(fixed)
    assert is_now_overridden()
    assert now_utc() == fixed.replace(tzinfo=timezone.utc)

    set_now_utc_for_testing(None)
    assert not is_now_overridden()
    assert now_utc().tzinfo is not None


def test_ensure_aware_utc():
    assert ensure_aware_utc(None) is None

    naive = datetime(2025, 1, 1, 9, 30)
    assert ensure_aware_utc(naive) == datetime(2025, 1, 1, 9, 30, tzinfo=timezone.utc)

    kst = timezone(timedelta(hours=9))
    converted = ensure_aware_utc(datetime(2025, 1, 1, 9, 30, tzinfo=kst))
    assert converted.tzinfo == timezone.utc
    assert converted.hour == 0


def test_is_past_and_add_minutes(clock):
    now = clock.base
    assert is_past(now - timedelta(seconds=1))
    assert not is_past(now)
    assert not is_past(None)
    assert is_past(now, now=now + timedelta(minutes=1))

    assert add_minutes(datetime(2025, 1, 1, 23, 50), 15) == datetime(2025, 1, 2, 0, 5, tzinfo=timezone.utc)


def test_epoch_seconds():
    assert to_epoch_seconds(datetime(1970, 1, 1, 0, 1)) == 60
