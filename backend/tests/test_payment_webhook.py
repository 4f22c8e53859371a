import json
import os
import sys
import time

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from auditoryx.main import app
from auditoryx.services.payment_webhook import (
    WebhookSignatureError,
    parse_event,
    signature_header,
    verify_signature,
)
from helpers import create_active_offer, create_booking, post_payment_event, unique

client = TestClient(app)
SECRET = "whsec_unit"


def test_verify_signature_accepts_fresh_signed_payload():
    body = b'{"id":"evt_1"}'
    verify_signature(body, signature_header(SECRET, body), SECRET)


def test_verify_signature_rejects_tampering_and_stale_timestamps():
    body = b'{"id":"evt_1"}'
    header = signature_header(SECRET, body)
    with pytest.raises(WebhookSignatureError):
        verify_signature(b'{"id":"evt_2"}', header, SECRET)
    with pytest.raises(WebhookSignatureError):
        verify_signature(body, header, "other-secret")
    with pytest.raises(WebhookSignatureError):
        verify_signature(body, None, SECRET)
    with pytest.raises(WebhookSignatureError):
        verify_signature(body, "v1=abc", SECRET)

    stale = signature_header(SECRET, body, timestamp=int(time.time()) - 301)
    with pytest.raises(WebhookSignatureError, match="tolerance"):
        verify_signature(body, stale, SECRET)


def test_parse_event_requires_id_and_type():
    event = parse_event(json.dumps({"id": "evt_9", "type": "x", "data": {"booking_id": "bk_1", "amount": "12.5"}}).encode())
    assert event.booking_id == "bk_1"
    assert event.amount == 12.5
    with pytest.raises(ValueError):
        parse_event(b'{"type": "x"}')
    with pytest.raises(ValueError):
        parse_event(b"not json")


def _accepted_booking():
    provider = unique("prov")
    offer = create_active_offer(client, provider)
    booking = create_booking(client, unique("cli"), offer["id"])
    client.post(f"/bookings/{booking['id']}/accept", json={"actor_user_id": provider})
    return booking


def test_replayed_event_applies_once():
    booking = _accepted_booking()
    event_id = unique("evt")
    first = post_payment_event(client, booking["id"], amount=booking["amount"], event_id=event_id)
    assert first.status_code == 200
    assert first.json() == {"received": True, "event_id": event_id, "status": "processed"}

    replay = post_payment_event(client, booking["id"], amount=booking["amount"], event_id=event_id)
    assert replay.json()["status"] == "duplicate"

    other = post_payment_event(client, booking["id"], amount=booking["amount"])
    assert other.json()["status"] == "duplicate"

    history = client.get(f"/bookings/{booking['id']}/history").json()
    assert [entry["to_status"] for entry in history].count("paid") == 1


def test_payment_before_acceptance_is_rejected():
    provider = unique("prov")
    booking = create_booking(client, unique("cli"), create_active_offer(client, provider)["id"])
    response = post_payment_event(client, booking["id"], amount=booking["amount"])
    assert response.status_code == 400
    assert client.get(f"/bookings/{booking['id']}").json()["is_paid"] is False


def test_amount_mismatch_is_rejected():
    booking = _accepted_booking()
    response = post_payment_event(client, booking["id"], amount=1.0)
    assert response.status_code == 400
    assert client.get(f"/bookings/{booking['id']}").json()["status"] == "accepted"


def test_non_finite_or_negative_amount_is_rejected():
    booking = _accepted_booking()
    for amount in (float("nan"), float("inf"), "NaN", -booking["amount"]):
        response = post_payment_event(client, booking["id"], amount=amount)
        assert response.status_code == 400, amount
    assert client.get(f"/bookings/{booking['id']}").json()["is_paid"] is False

    with pytest.raises(ValueError):
        parse_event(b'{"id": "evt_nan", "type": "x", "data": {"amount": NaN}}')


def test_unknown_booking_is_404():
    assert post_payment_event(client, "bk_missing", amount=10).status_code == 404


def test_other_event_types_are_acknowledged():
    booking = _accepted_booking()
    response = post_payment_event(client, booking["id"], event_type="charge.refunded")
    assert response.status_code == 200
    assert response.json()["status"] == "ignored"
    assert client.get(f"/bookings/{booking['id']}").json()["status"] == "accepted"


def test_bad_signature_is_400():
    response = client.post(
        "/webhooks/payments",
        content=b'{"id":"evt_x","type":"checkout.session.completed"}',
        headers={"X-Payment-Signature": "t=1,v1=deadbeef"},
    )
    assert response.status_code == 400


def test_missing_secret_is_500(monkeypatch):
    monkeypatch.delenv("PAYMENT_WEBHOOK_SECRET", raising=False)
    response = client.post("/webhooks/payments", content=b"{}", headers={"X-Payment-Signature": "t=1,v1=00"})
    assert response.status_code == 500
