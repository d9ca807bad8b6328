"""
Cancellation of a subscription at MercadoPago and locally.
"""
import logging
from typing import Any, Dict, Optional

from marketplace_billing.core.credentials import CredentialSet
from marketplace_billing.db.models.subscription import Subscription, SubscriptionStatus
from marketplace_billing.services.errors import (
    ConfigurationError,
    NotFound,
    OwnershipMismatch,
    ProviderUnavailable,
    ValidationFailure,
)
from marketplace_billing.services.mercadopago_client import MercadoPagoClient, MercadoPagoError
from marketplace_billing.services.side_effects import dispatch_entitlement_refresh
from marketplace_billing.services.subscription_state import TransitionResult, apply_transition, can_transition
from marketplace_billing.services.subscription_store import SubscriptionStore, utcnow

logger = logging.getLogger(__name__)


def ensure_cancellable(subscription: Subscription) -> None:
    """Reject statuses the state machine cannot move to cancelled (paused, expired)."""
    if subscription.status == SubscriptionStatus.CANCELLED.value:
        return
    if not can_transition(subscription.status, SubscriptionStatus.CANCELLED):
        raise ValidationFailure(
            f"Subscription in status '{subscription.status}' cannot be cancelled",
            extra={"status": subscription.status},
        )


def cancel_subscription(
    store: SubscriptionStore,
    client: MercadoPagoClient,
    credentials: CredentialSet,
    subscription: Subscription,
    reason: str,
    dispatcher=None,
    metadata_patch: Optional[Dict[str, Any]] = None,
) -> TransitionResult:
    """
    Cancel the preapproval at MercadoPago, then apply the local transition.

    MercadoPago is called first: if it fails, ``MercadoPagoError`` propagates
    and the local row is left as it was. Cancelling an already-cancelled
    subscription is a no-op; a status that cannot become cancelled raises
    ``ValidationFailure`` before MercadoPago is contacted.
    """
    if subscription.status == SubscriptionStatus.CANCELLED.value:
        logger.info(f"Subscription already cancelled: subscription_id={subscription.id}")
        return TransitionResult(subscription.status, subscription.status, False, "already_in_state")
    ensure_cancellable(subscription)

    if subscription.mercadopago_subscription_id:
        if not credentials.subscriptions_access_token:
            raise ConfigurationError("MercadoPago subscriptions credentials not configured")
        client.cancel_preapproval(subscription.mercadopago_subscription_id, credentials.subscriptions_access_token)
    else:
        logger.warning(f"Subscription {subscription.id} has no MercadoPago id; cancelling locally only")

    patch = {"cancelledAt": utcnow().isoformat(), "cancelReason": reason}
    patch.update(metadata_patch or {})
    result = apply_transition(store, subscription, SubscriptionStatus.CANCELLED, metadata_patch=patch)

    if result.affects_entitlements and dispatcher is not None:
        dispatch_entitlement_refresh(dispatcher, subscription.user_id)
    return result


def unsubscribe(
    store: SubscriptionStore,
    client: MercadoPagoClient,
    credentials: CredentialSet,
    user_id: str,
    subscription_id: str,
    dispatcher=None,
) -> Dict[str, Any]:
    """User-initiated cancellation."""
    subscription = store.get_subscription(subscription_id) or store.get_by_provider_id(subscription_id)
    if not subscription:
        raise NotFound("Subscription not found")
    if subscription.user_id != user_id:
        raise OwnershipMismatch("Subscription does not belong to user")

    try:
        result = cancel_subscription(
            store, client, credentials, subscription, reason="user_request", dispatcher=dispatcher,
        )
    except MercadoPagoError as e:
        logger.error(f"Unsubscribe failed at MercadoPago: subscription_id={subscription.id}: {e}")
        raise ProviderUnavailable(f"Failed to cancel subscription at MercadoPago: {e}")

    logger.info(f"Unsubscribe processed: user_id={user_id}, subscription_id={subscription.id}, status={result.current}")
    return {
        "subscriptionId": subscription.id,
        "status": result.current,
        "changed": result.changed,
    }
