import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from auditoryx.services import booking_lifecycle as lifecycle
from auditoryx.services.errors import MarketplacePermissionError, MarketplaceValidationError


def test_transition_table_matches_allowed_moves():
    assert lifecycle.can_transition("pending", "accepted")
    assert lifecycle.can_transition("pending", "rejected")
    assert lifecycle.can_transition("accepted", "paid")
    assert lifecycle.can_transition("paid", "completed")
    assert lifecycle.can_transition("confirmed", "completed")
    assert not lifecycle.can_transition("pending", "paid")
    assert not lifecycle.can_transition("accepted", "completed")


def test_no_path_completes_a_pending_booking():
    with pytest.raises(MarketplaceValidationError, match="pending -> completed"):
        lifecycle.assert_transition("pending", "completed")


@pytest.mark.parametrize("status", ["completed", "rejected", "cancelled"])
def test_terminal_statuses_reject_every_move(status):
    for target in lifecycle.BOOKING_STATUSES:
        with pytest.raises(MarketplaceValidationError, match="no further status changes"):
            lifecycle.assert_transition(status, target)


def test_every_non_terminal_status_can_be_cancelled():
    for status in ("pending", "accepted", "paid", "confirmed"):
        lifecycle.assert_transition(status, "cancelled")


def test_party_roles_and_permissions():
    assert lifecycle.party_role("client_1", "prov_1", "client_1") == "client"
    assert lifecycle.party_role("client_1", "prov_1", "prov_1") == "provider"
    assert lifecycle.party_role("client_1", "prov_1", "someone") is None
    with pytest.raises(MarketplacePermissionError):
        lifecycle.assert_party("client_1", "prov_1", "someone")
    with pytest.raises(MarketplacePermissionError):
        lifecycle.assert_provider_action("prov_1", "client_1", "accepted")
    lifecycle.assert_provider_action("prov_1", "prov_1", "rejected")


def test_release_requires_both_agreements():
    with pytest.raises(MarketplaceValidationError, match="missing: provider"):
        lifecycle.assert_contract_agreed(True, False)
    with pytest.raises(MarketplaceValidationError, match="missing: client, provider"):
        lifecycle.assert_contract_agreed(False, False)
    lifecycle.assert_contract_agreed(True, True)


def test_contract_only_signable_once_paid():
    with pytest.raises(MarketplaceValidationError):
        lifecycle.assert_contract_signable("accepted")
    lifecycle.assert_contract_signable("paid")
    lifecycle.assert_contract_signable("confirmed")


def test_credit_awarded_only_once_and_only_when_paid():
    assert lifecycle.should_award_credit(is_paid=True, processed=False)
    assert not lifecycle.should_award_credit(is_paid=True, processed=True)
    assert not lifecycle.should_award_credit(is_paid=False, processed=False)


def test_reviews_gated_on_completion():
    with pytest.raises(MarketplaceValidationError, match="Reviews can only be created"):
        lifecycle.assert_post_completion("paid", "Reviews")
    lifecycle.assert_post_completion("completed", "Reviews")
