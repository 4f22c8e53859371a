import json
import logging
import os
import sqlite3
import sys
from datetime import datetime, timedelta, timezone

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from auditoryx.models import BookingCreateRequest, OfferCreateRequest, OfferUpdateRequest
from auditoryx.services.errors import MarketplacePermissionError, MarketplaceValidationError
from auditoryx.services.marketplace_store import MarketplaceStore

START = datetime(2026, 5, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture()
def store(tmp_path):
    return MarketplaceStore(db_path=str(tmp_path / "store.sqlite3"))


def _offer(store, provider="prov_1", turnaround_days=3):
    offer = store.create_offer(
        OfferCreateRequest(
            user_id=provider,
            role="engineer",
            title="Podcast edit and cleanup",
            description="Noise removal, leveling and edit of one episode.",
            price=120,
            turnaround_days=turnaround_days,
            revisions=1,
            deliverables=["Edited episode"],
        )
    )
    return store.update_offer(offer.id, OfferUpdateRequest(user_id=provider, active=True))


def _paid(store, provider="prov_1", client_id="cli_1", turnaround_days=3):
    offer = _offer(store, provider, turnaround_days)
    booking = store.create_booking(
        BookingCreateRequest(
            client_id=client_id, offer_id=offer.id, scheduled_at=(START + timedelta(days=20)).isoformat()
        ),
        now=START,
    )
    store.respond_to_booking(
        booking_id=booking.id, actor_user_id=provider, decision="accepted", now=START + timedelta(hours=3)
    )
    store.mark_paid(event_id=f"evt_{booking.id}", event_type="checkout.session.completed", booking_id=booking.id, now=START + timedelta(hours=4))
    store.agree_contract(booking_id=booking.id, actor_user_id=client_id)
    store.agree_contract(booking_id=booking.id, actor_user_id=provider)
    return booking


def test_late_completion_counts_late_delivery(store):
    booking = _paid(store, turnaround_days=3)
    result = store.complete_booking(
        booking_id=booking.id, actor_user_id="cli_1", now=START + timedelta(days=5)
    )
    assert result.credit_awarded_now is True
    assert store.get_user("prov_1").late_deliveries == 1


def test_on_time_completion_and_response_average(store):
    booking = _paid(store, turnaround_days=7)
    store.complete_booking(booking_id=booking.id, actor_user_id="cli_1", now=START + timedelta(days=2))
    provider = store.get_user("prov_1")
    assert provider.late_deliveries == 0
    assert provider.response_hrs == 3.0
    assert provider.response_count == 1


def test_admin_can_release_escrow(store):
    booking = _paid(store)
    with pytest.raises(MarketplacePermissionError):
        store.complete_booking(booking_id=booking.id, actor_user_id="admin", now=START + timedelta(days=1))
    assert store.get_escrow(booking.id).status == "held"

    result = store.complete_booking(
        booking_id=booking.id, actor_user_id="admin", now=START + timedelta(days=1), acting_as_admin=True
    )
    assert result.booking.status == "completed"
    assert store.get_escrow(booking.id).status == "released"


def test_tenth_completion_awards_milestone(store):
    for idx in range(10):
        booking = _paid(store, client_id=f"cli_{idx}")
        store.update_offer(booking.offer_id, OfferUpdateRequest(user_id="prov_1", active=False))
        result = store.complete_booking(
            booking_id=booking.id, actor_user_id=f"cli_{idx}", now=START + timedelta(days=1)
        )
    assert result.new_badges == ["milestone-10-bookings"]
    provider = store.get_user("prov_1")
    assert provider.xp == 1000
    assert provider.badges == ["first-booking", "milestone-10-bookings"]


def test_invalid_list_filters(store):
    with pytest.raises(MarketplaceValidationError):
        store.list_bookings(user_id="x", role="owner")
    with pytest.raises(MarketplaceValidationError):
        store.list_bookings(status="archived")


def test_corrupt_json_columns_degrade_to_empty(store):
    store.upsert_user(user_id="u1", display_name="U1", roles=["artist"])
    with sqlite3.connect(store.db_path) as conn:
        conn.execute("UPDATE users SET roles_json = ?, badges_json = ? WHERE id = ?", ("{bad", "42", "u1"))
        conn.commit()
    profile = store.get_user("u1")
    assert profile.roles == []
    assert profile.badges == []


def _transition_events(caplog):
    return [
        json.loads(record.getMessage().split("=", 1)[1])
        for record in caplog.records
        if record.getMessage().startswith("booking_transition=")
    ]


def test_transition_log_covers_creation_and_skips_rejected_changes(store, caplog):
    caplog.set_level(logging.INFO, logger="auditoryx.services.marketplace_store")
    offer = _offer(store)
    booking = store.create_booking(
        BookingCreateRequest(
            client_id="cli_1", offer_id=offer.id, scheduled_at=(START + timedelta(days=20)).isoformat()
        ),
        now=START,
    )
    assert _transition_events(caplog) == [
        {"actor": "cli_1", "booking_id": booking.id, "from": "none", "to": "pending"}
    ]

    caplog.clear()
    with pytest.raises(MarketplaceValidationError):
        store.complete_booking(booking_id=booking.id, actor_user_id="cli_1", now=START + timedelta(hours=1))
    assert _transition_events(caplog) == []

    store.respond_to_booking(
        booking_id=booking.id, actor_user_id="prov_1", decision="accepted", now=START + timedelta(hours=2)
    )
    assert [(event["from"], event["to"]) for event in _transition_events(caplog)] == [("pending", "accepted")]
