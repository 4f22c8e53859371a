import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from auditoryx.services.refund_policy import quote_refund, refund_percentage_for

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "tier,hours,expected",
    [
        ("standard", 72, 100),
        ("standard", 30, 50),
        ("standard", 10, 0),
        ("verified", 80, 100),
        ("verified", 50, 75),
        ("verified", 30, 25),
        ("verified", 5, 0),
        ("signature", 200, 100),
        ("signature", 100, 75),
        ("signature", 60, 50),
        ("signature", 30, 10),
        ("signature", 1, 0),
        ("unknown-tier", 30, 50),
    ],
)
def test_refund_percentage_follows_tier_table(tier, hours, expected):
    assert refund_percentage_for(tier, hours) == expected


def test_full_refund_charges_processing_fee_only():
    quote = quote_refund(
        amount=200.0, scheduled_at=NOW + timedelta(hours=72), provider_tier="standard", paid=True, now=NOW
    )
    assert quote.can_cancel
    assert quote.refund_percentage == 100
    assert quote.processing_fee == 6.1
    assert quote.platform_fee == 0.0
    assert quote.refund_amount == 193.9


def test_partial_refund_charges_platform_fee():
    quote = quote_refund(
        amount=100.0, scheduled_at=NOW + timedelta(hours=30), provider_tier="standard", paid=True, now=NOW
    )
    assert quote.refund_percentage == 50
    assert quote.processing_fee == 3.2
    assert quote.platform_fee == 20.0
    assert quote.refund_amount == 46.8


def test_past_booking_cannot_be_cancelled():
    quote = quote_refund(
        amount=100.0, scheduled_at=NOW - timedelta(hours=1), provider_tier="signature", paid=True, now=NOW
    )
    assert quote.can_cancel is False
    assert quote.refund_amount == 0.0


def test_unpaid_booking_cancels_without_refund():
    quote = quote_refund(
        amount=100.0, scheduled_at=NOW + timedelta(hours=100), provider_tier="standard", paid=False, now=NOW
    )
    assert quote.can_cancel is True
    assert quote.refund_amount == 0.0
    assert quote.processing_fee == 0.0
    assert quote.platform_fee == 0.0
