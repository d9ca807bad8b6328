"""
Subscription state machine.

Allowed moves:

    pending -> active | cancelled
    active  -> cancelled | paused
    paused  -> active

``cancelled`` and ``expired`` are terminal. MercadoPago's preapproval
vocabulary is larger than ours; statuses without a mapping never move local
state.
"""
import logging
from typing import NamedTuple, Optional

from marketplace_billing.db.models.subscription import Subscription, SubscriptionStatus
from marketplace_billing.services.subscription_store import SubscriptionStore, utcnow

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    SubscriptionStatus.PENDING: {SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED},
    SubscriptionStatus.ACTIVE: {SubscriptionStatus.CANCELLED, SubscriptionStatus.PAUSED},
    SubscriptionStatus.PAUSED: {SubscriptionStatus.ACTIVE},
    SubscriptionStatus.CANCELLED: set(),
    SubscriptionStatus.EXPIRED: set(),
}

PROVIDER_STATUS_MAP = {
    "authorized": SubscriptionStatus.ACTIVE,
    "cancelled": SubscriptionStatus.CANCELLED,
    "paused": SubscriptionStatus.PAUSED,
}

# Transitions after which the user's roles/entitlements must be recomputed
ENTITLEMENT_AFFECTING = {SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED}


class TransitionResult(NamedTuple):
    previous: str
    current: str
    changed: bool
    reason: str

    @property
    def affects_entitlements(self) -> bool:
        return self.changed and SubscriptionStatus(self.current) in ENTITLEMENT_AFFECTING


def target_for_provider_status(provider_status: Optional[str]) -> Optional[SubscriptionStatus]:
    """Map a preapproval status to the local status it implies, if any."""
    if not provider_status:
        return None
    return PROVIDER_STATUS_MAP.get(str(provider_status).lower())


def can_transition(current, target) -> bool:
    return SubscriptionStatus(target) in ALLOWED_TRANSITIONS.get(SubscriptionStatus(current), set())


def apply_transition(
    store: SubscriptionStore,
    subscription: Subscription,
    target: SubscriptionStatus,
    metadata_patch: Optional[dict] = None,
    **fields,
) -> TransitionResult:
    """
    Move ``subscription`` to ``target`` if the state machine allows it.

    Re-applying the current status is a no-op (the metadata patch is still
    written so the last provider status stays visible). Disallowed moves are
    logged and leave the row untouched.
    """
    previous = SubscriptionStatus(subscription.status)
    target = SubscriptionStatus(target)
    patch = dict(metadata_patch or {})

    if previous == target:
        if patch or fields:
            store.update_subscription(subscription, metadata_patch=patch, **fields)
        return TransitionResult(previous.value, previous.value, False, "already_in_state")

    if not can_transition(previous, target):
        logger.warning(
            f"Ignoring disallowed transition: subscription_id={subscription.id}, "
            f"{previous.value} -> {target.value}"
        )
        return TransitionResult(previous.value, previous.value, False, "transition_not_allowed")

    patch.setdefault("lastStatusUpdate", utcnow().isoformat())
    if target == SubscriptionStatus.CANCELLED:
        fields.setdefault("end_date", utcnow())
    store.update_subscription(subscription, metadata_patch=patch, status=target.value, **fields)

    logger.info(
        f"Subscription transitioned: subscription_id={subscription.id}, user_id={subscription.user_id}, "
        f"{previous.value} -> {target.value}"
    )
    return TransitionResult(previous.value, target.value, True, "transitioned")
