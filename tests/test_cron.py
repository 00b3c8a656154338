# tests/test_cron.py
import pytest

from vendgros import crud
from vendgros.config import settings

CRON_SECRET = "cron-test-secret"


@pytest.fixture()
def cron_headers(monkeypatch):
    monkeypatch.setattr(settings, "CRON_SECRET", CRON_SECRET)
    return {"Authorization": f"Bearer {CRON_SECRET}"}


def test_cron_requires_configured_secret(client, monkeypatch):
    monkeypatch.setattr(settings, "CRON_SECRET", None)
    r = client.post("/cron/cancel-expired-reservations", headers={"Authorization": "Bearer anything"})
    assert r.status_code == 500
    assert r.json() == {"error": "Server configuration error"}


@pytest.mark.parametrize("auth", [None, "Bearer wrong", CRON_SECRET, f"Basic {CRON_SECRET}"])
def test_cron_rejects_bad_authorization(client, cron_headers, auth):
    headers = {"Authorization": auth} if auth else {}
    r = client.post("/cron/cancel-expired-reservations", headers=headers)
    assert r.status_code == 401
    assert r.json() == {"error": "Unauthorized"}


def test_cron_with_nothing_to_do(client, cron_headers, listing, buyer, db):
    crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer.id, quantity=1)

    r = client.post("/cron/cancel-expired-reservations", headers=cron_headers)
    assert r.status_code == 200
    assert r.json() == {"success": True, "cancelled": 0, "message": "No expired reservations found"}


def test_cron_cancels_expired(clock, client, cron_headers, db, listing, buyer, buyer2):
    a = crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer.id, quantity=2)
    b = crud.create_reservation(db, listing_id=listing.id, buyer_id=buyer2.id, quantity=3)
    crud.confirm_reservation(db, reservation_id=b.id, payment_intent_id="pi_paid")

    clock.advance(40)
    r = client.post("/cron/cancel-expired-reservations", headers=cron_headers)
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["cancelled"] == 1
    assert body["failed"] == 0
    assert body["message"] == "Cancelled 1 expired reservations"
    assert body["details"] == [{"id": a.id, "success": True}]

    db.expire_all()
    assert crud.get_listing(db, listing.id).quantity_available == 7


def test_cron_health_probe(client):
    r = client.get("/cron/cancel-expired-reservations")
    assert r.status_code == 200
    assert r.json()["status"] == "ready"
