import json
import os
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from auditoryx.services.payment_webhook import signature_header


def unique(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:8]}"


def future_iso(days: float = 10) -> str:
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


def offer_payload(user_id: str, **overrides):
    payload = {
        "user_id": user_id,
        "role": "producer",
        "title": "Mix and master a single",
        "description": "Full mix and master of one track with stem cleanup.",
        "price": 200,
        "currency": "USD",
        "turnaround_days": 7,
        "revisions": 2,
        "deliverables": ["Stereo WAV master", "Instrumental"],
        "addons": [
            {"name": "stems", "price": 50},
            {"name": "rush", "price": 25, "required": True},
        ],
        "usage_policy": "Non-exclusive commercial use",
    }
    payload.update(overrides)
    return payload


def create_active_offer(client, user_id: str, **overrides) -> dict:
    created = client.post("/offers", json=offer_payload(user_id, **overrides))
    assert created.status_code == 200, created.text
    offer = created.json()
    activated = client.patch(f"/offers/{offer['id']}", json={"user_id": user_id, "active": True})
    assert activated.status_code == 200, activated.text
    return activated.json()


def create_booking(client, client_id: str, offer_id: str, **overrides) -> dict:
    payload = {"client_id": client_id, "offer_id": offer_id, "scheduled_at": future_iso(), "message": "Ready when you are"}
    payload.update(overrides)
    response = client.post("/bookings", json=payload)
    assert response.status_code == 200, response.text
    return response.json()


def post_payment_event(client, booking_id: str, amount=None, event_id=None, event_type="checkout.session.completed"):
    body = json.dumps(
        {
            "id": event_id or unique("evt"),
            "type": event_type,
            "data": {"booking_id": booking_id, "amount": amount, "payment_reference": "pi_test"},
        }
    ).encode("utf-8")
    header = signature_header(os.environ["PAYMENT_WEBHOOK_SECRET"], body)
    return client.post(
        "/webhooks/payments",
        content=body,
        headers={"X-Payment-Signature": header, "Content-Type": "application/json"},
    )


def paid_booking(client, provider_id: str, client_id: str) -> dict:
    offer = create_active_offer(client, provider_id)
    booking = create_booking(client, client_id, offer["id"])
    accepted = client.post(f"/bookings/{booking['id']}/accept", json={"actor_user_id": provider_id})
    assert accepted.status_code == 200, accepted.text
    paid = post_payment_event(client, booking["id"], amount=booking["amount"])
    assert paid.status_code == 200, paid.text
    return client.get(f"/bookings/{booking['id']}").json()
