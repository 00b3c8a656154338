# tests/conftest.py
import os

# vendgros 모듈 임포트 전에 환경 고정
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_EXPIRE_WORKER"] = "0"
os.environ.setdefault("IMPERSONATION_SECRET", "test-impersonation-secret")
os.environ.setdefault("MESSAGE_ENCRYPTION_KEY", "test-master-key-for-messages")

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from vendgros import crud
from vendgros import models  # noqa: F401  (테이블 등록)
from vendgros.core.time_policy import set_now_utc_for_testing
from vendgros.database import Base, get_db
from vendgros.pg.client import reset_gateway
from vendgros.security.auth import create_access_token

# 월요일 00:00 UTC
BASE_NOW = datetime(2025, 1, 6, 0, 0, tzinfo=timezone.utc)


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture()
def db(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture(autouse=True)
def _fixed_clock_and_gateway():
    set_now_utc_for_testing(BASE_NOW)
    reset_gateway()
    yield
    set_now_utc_for_testing(None)
    reset_gateway()


@pytest.fixture()
def client(session_factory):
    from vendgros.main import app

    def _override_get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = _override_get_db
    # lifespan(워커/create_all)은 띄우지 않는다
    c = TestClient(app)
    yield c
    app.dependency_overrides.clear()


# ---------------------------------------------------------
# 사용자 / 리스팅
# ---------------------------------------------------------
@pytest.fixture()
def seller(db):
    return crud.create_user(db, email="seller@example.com", name="Sam Seller", password="password-1")


@pytest.fixture()
def buyer(db):
    return crud.create_user(db, email="buyer@example.com", name="Bea Buyer", password="password-2")


@pytest.fixture()
def buyer2(db):
    return crud.create_user(db, email="buyer2@example.com", name="Bo Buyer", password="password-3")


@pytest.fixture()
def admin(db):
    return crud.create_user(
        db, email="admin@example.com", name="Ada Admin", password="password-4", is_admin=True,
    )


@pytest.fixture()
def make_listing(db, seller):
    def _make(**overrides):
        params = dict(
            seller_id=seller.id,
            title="Bulk apples",
            price_per_piece=10.0,
            quantity_total=10,
            pickup_address="1 Market St",
            publish=True,
        )
        params.update(overrides)
        return crud.create_listing(db, **params)

    return _make


@pytest.fixture()
def listing(make_listing):
    return make_listing()


def auth_headers(user) -> dict:
    token = create_access_token({"sub": str(user.id)}, expires_delta=timedelta(hours=1))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def headers_for():
    return auth_headers


class Clock:
    """테스트용 고정 시계 (BASE_NOW 기준으로 앞으로 돌리기)."""

    base = BASE_NOW

    def advance(self, minutes: int = 0, **kwargs) -> datetime:
        ts = BASE_NOW + timedelta(minutes=minutes, **kwargs)
        set_now_utc_for_testing(ts)
        return ts


@pytest.fixture()
def clock():
    return Clock()
