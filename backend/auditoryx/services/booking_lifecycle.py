"""Booking status transitions and the guards that gate escrow side effects.

Everything here is pure: callers load the booking, ask whether a move is
legal, and persist the result themselves.
"""

from typing import Dict, Optional, Set

from auditoryx.services.errors import MarketplacePermissionError, MarketplaceValidationError

PENDING = "pending"
ACCEPTED = "accepted"
REJECTED = "rejected"
PAID = "paid"
CONFIRMED = "confirmed"
COMPLETED = "completed"
CANCELLED = "cancelled"

BOOKING_STATUSES = (PENDING, ACCEPTED, REJECTED, PAID, CONFIRMED, COMPLETED, CANCELLED)

BOOKING_TERMINAL_STATUSES = {COMPLETED, CANCELLED, REJECTED}

BOOKING_TRANSITIONS: Dict[str, Set[str]] = {
    PENDING: {ACCEPTED, REJECTED, CANCELLED},
    ACCEPTED: {PAID, CANCELLED},
    PAID: {CONFIRMED, COMPLETED, CANCELLED},
    CONFIRMED: {COMPLETED, CANCELLED},
    COMPLETED: set(),
    REJECTED: set(),
    CANCELLED: set(),
}

# Statuses in which money sits in escrow.
ESCROW_HELD_STATUSES = {PAID, CONFIRMED}

CONTRACT_SIGNABLE_STATUSES = {PAID, CONFIRMED}

PROVIDER_ONLY_TARGETS = {ACCEPTED, REJECTED}


def can_transition(current: str, target: str) -> bool:
    return target in BOOKING_TRANSITIONS.get(current, set())


def assert_transition(current: str, target: str) -> None:
    if current in BOOKING_TERMINAL_STATUSES:
        raise MarketplaceValidationError(f"Booking is already {current}; no further status changes allowed")
    if not can_transition(current, target):
        raise MarketplaceValidationError(f"Invalid status transition: {current} -> {target}")


def party_role(booking_client_id: str, booking_provider_id: str, actor_user_id: str) -> Optional[str]:
    if actor_user_id == booking_client_id:
        return "client"
    if actor_user_id == booking_provider_id:
        return "provider"
    return None


def assert_party(booking_client_id: str, booking_provider_id: str, actor_user_id: str) -> str:
    role = party_role(booking_client_id, booking_provider_id, actor_user_id)
    if role is None:
        raise MarketplacePermissionError("Only the client or provider of this booking can do that")
    return role


def assert_provider_action(booking_provider_id: str, actor_user_id: str, target: str) -> None:
    if target in PROVIDER_ONLY_TARGETS and actor_user_id != booking_provider_id:
        raise MarketplacePermissionError("Only the provider can accept or reject a booking")


def assert_contract_agreed(agreed_by_client: bool, agreed_by_provider: bool) -> None:
    if not (agreed_by_client and agreed_by_provider):
        missing = []
        if not agreed_by_client:
            missing.append("client")
        if not agreed_by_provider:
            missing.append("provider")
        raise MarketplaceValidationError(
            "Contract must be agreed by both parties before escrow release (missing: " + ", ".join(missing) + ")"
        )


def assert_contract_signable(status: str) -> None:
    if status not in CONTRACT_SIGNABLE_STATUSES:
        raise MarketplaceValidationError(f"Contract can only be agreed once the booking is paid (status: {status})")


def assert_post_completion(status: str, what: str) -> None:
    """Reviews and disputes are only accepted for completed bookings."""
    if status != COMPLETED:
        raise MarketplaceValidationError(f"{what} can only be created for completed bookings")


def should_award_credit(is_paid: bool, processed: bool) -> bool:
    return is_paid and not processed
