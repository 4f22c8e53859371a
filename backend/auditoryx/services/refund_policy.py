from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Tuple

# (minimum hours before the session, refund percentage), most generous first.
CANCELLATION_POLICIES: Dict[str, List[Tuple[int, int]]] = {
    "standard": [(48, 100), (24, 50), (0, 0)],
    "verified": [(72, 100), (48, 75), (24, 25), (0, 0)],
    "signature": [(168, 100), (72, 75), (48, 50), (24, 10), (0, 0)],
}

POLICY_NAMES = {
    "standard": "Standard Policy",
    "verified": "Verified Creator Policy",
    "signature": "Signature Creator Policy",
}

PLATFORM_FEE_RATE = 0.20
PROCESSING_FEE_RATE = 0.029
PROCESSING_FEE_FIXED = 0.30
PROCESSING_FEE_CAP_RATE = 0.10


@dataclass(frozen=True)
class RefundQuote:
    can_cancel: bool
    refund_amount: float
    refund_percentage: int
    processing_fee: float
    platform_fee: float
    hours_until_booking: float
    policy: str
    reason: str


def _cents(value: float) -> float:
    return round(value + 1e-9, 2)


def refund_percentage_for(tier: str, hours_until_booking: float) -> int:
    rules = CANCELLATION_POLICIES.get(tier, CANCELLATION_POLICIES["standard"])
    for min_hours, percentage in rules:
        if hours_until_booking >= min_hours:
            return percentage
    return rules[-1][1]


def quote_refund(
    *,
    amount: float,
    scheduled_at: datetime,
    provider_tier: str,
    paid: bool,
    now: datetime,
) -> RefundQuote:
    policy_key = provider_tier if provider_tier in CANCELLATION_POLICIES else "standard"
    policy_name = POLICY_NAMES[policy_key]
    hours_until = (scheduled_at - now).total_seconds() / 3600

    if hours_until < 0:
        return RefundQuote(
            can_cancel=False,
            refund_amount=0.0,
            refund_percentage=0,
            processing_fee=0.0,
            platform_fee=0.0,
            hours_until_booking=0.0,
            policy=policy_name,
            reason="Cannot cancel bookings that have already occurred",
        )

    if not paid:
        return RefundQuote(
            can_cancel=True,
            refund_amount=0.0,
            refund_percentage=0,
            processing_fee=0.0,
            platform_fee=0.0,
            hours_until_booking=round(hours_until, 2),
            policy=policy_name,
            reason="Booking has not been paid; nothing to refund",
        )

    percentage = refund_percentage_for(policy_key, hours_until)
    base_refund = amount * percentage / 100
    processing_fee = 0.0
    if percentage > 0:
        processing_fee = min(amount * PROCESSING_FEE_RATE + PROCESSING_FEE_FIXED, base_refund * PROCESSING_FEE_CAP_RATE)
    platform_fee = amount * PLATFORM_FEE_RATE if percentage < 100 else 0.0
    refund_amount = max(0.0, base_refund - processing_fee)

    if percentage == 0:
        reason = "Cancellation too close to booking time - no refund available"
    else:
        reason = f"{percentage}% refund applied based on {policy_name}"

    return RefundQuote(
        can_cancel=True,
        refund_amount=_cents(refund_amount),
        refund_percentage=percentage,
        processing_fee=_cents(processing_fee),
        platform_fee=_cents(platform_fee),
        hours_until_booking=round(hours_until, 2),
        policy=policy_name,
        reason=reason,
    )
