"""
Tests for the subscription state machine.
"""
import pytest

from marketplace_billing.db.models.subscription import SubscriptionStatus
from marketplace_billing.services.subscription_state import (
    apply_transition,
    can_transition,
    target_for_provider_status,
)
from marketplace_billing.services.subscription_store import SubscriptionStore


@pytest.mark.parametrize("current,target,allowed", [
    ("pending", "active", True),
    ("pending", "cancelled", True),
    ("pending", "paused", False),
    ("active", "cancelled", True),
    ("active", "paused", True),
    ("active", "pending", False),
    ("paused", "active", True),
    ("paused", "cancelled", False),
    ("cancelled", "active", False),
    ("expired", "active", False),
])
def test_allowed_transitions(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_provider_status_mapping():
    assert target_for_provider_status("authorized") == SubscriptionStatus.ACTIVE
    assert target_for_provider_status("cancelled") == SubscriptionStatus.CANCELLED
    assert target_for_provider_status("paused") == SubscriptionStatus.PAUSED
    assert target_for_provider_status("pending") is None
    assert target_for_provider_status(None) is None


def test_apply_transition_moves_and_stamps(db, user, plan, subscription_factory):
    subscription = subscription_factory(user, plan)
    store = SubscriptionStore(db)

    result = apply_transition(store, subscription, SubscriptionStatus.ACTIVE, metadata_patch={"mercadoPagoStatus": "authorized"})

    assert result.changed
    assert result.affects_entitlements
    assert subscription.status == "active"
    assert subscription.details["mercadoPagoStatus"] == "authorized"
    assert "lastStatusUpdate" in subscription.details
    assert subscription.details["externalReference"].startswith("subscription_")


def test_same_state_is_noop(db, user, plan, subscription_factory):
    subscription = subscription_factory(user, plan, status="active")

    result = apply_transition(SubscriptionStore(db), subscription, SubscriptionStatus.ACTIVE)

    assert not result.changed
    assert not result.affects_entitlements
    assert result.reason == "already_in_state"


def test_cancelled_is_terminal(db, user, plan, subscription_factory):
    subscription = subscription_factory(user, plan, status="cancelled")

    result = apply_transition(SubscriptionStore(db), subscription, SubscriptionStatus.ACTIVE)

    assert not result.changed
    assert result.reason == "transition_not_allowed"
    assert subscription.status == "cancelled"


def test_cancel_sets_end_date(db, user, plan, subscription_factory):
    subscription = subscription_factory(user, plan, status="active")

    apply_transition(SubscriptionStore(db), subscription, SubscriptionStatus.CANCELLED)

    assert subscription.end_date is not None


def test_pause_does_not_affect_entitlements(db, user, plan, subscription_factory):
    subscription = subscription_factory(user, plan, status="active")

    result = apply_transition(SubscriptionStore(db), subscription, SubscriptionStatus.PAUSED)

    assert result.changed
    assert not result.affects_entitlements
