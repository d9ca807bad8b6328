"""
Verification poll: user-triggered alternative to waiting for a webhook.
"""
import logging
from typing import Any, Dict, List

from marketplace_billing.core import config
from marketplace_billing.core.credentials import AllCandidatesFailed
from marketplace_billing.services.errors import NotFound, ProviderUnavailable
from marketplace_billing.services.reconciliation_engine import ReconciliationEngine

logger = logging.getLogger(__name__)

AUTHORIZED_STATUSES = {"authorized", "active"}


def verify_subscription(
    engine: ReconciliationEngine,
    preapproval_id: str,
    retry_after_seconds: int = config.VERIFY_RETRY_AFTER_SECONDS,
) -> Dict[str, Any]:
    """
    Check a preapproval at MercadoPago and reconcile it if it is authorized.

    An authorized preapproval is fed to the engine as a synthesized
    ``preapproval`` notification, so webhook and poll share one transition
    path. Anything else leaves local state untouched and tells the caller to
    retry later.

    Raises:
        ProviderUnavailable: If MercadoPago cannot be read
        NotFound: If no local subscription matches an authorized preapproval
    """
    try:
        preapproval = engine.fetch_preapproval(preapproval_id)
    except AllCandidatesFailed as e:
        logger.error(f"Verification fetch failed: preapproval_id={preapproval_id}: {e}")
        raise ProviderUnavailable(f"Failed to get MercadoPago subscription: {e}")

    provider_status = preapproval.get("status")
    if provider_status not in AUTHORIZED_STATUSES:
        local = engine.store.get_by_provider_id(preapproval_id)
        logger.info(f"Preapproval {preapproval_id} not authorized yet (status={provider_status})")
        return {
            "status": local.status if local else "pending",
            "providerStatus": provider_status,
            "subscriptionId": local.id if local else None,
            "updated": False,
            "retryAfterSeconds": retry_after_seconds,
        }

    outcome = engine.handle_notification({
        "type": "preapproval",
        "action": "verification",
        "data": {"id": preapproval_id},
    })
    if outcome.result == "correlation_miss":
        raise NotFound(f"No local subscription found for preapproval {preapproval_id}")
    if outcome.result == "fetch_failed":
        raise ProviderUnavailable(outcome.detail or "Failed to get MercadoPago subscription")

    return {
        "status": outcome.status,
        "providerStatus": provider_status,
        "subscriptionId": outcome.subscription_id,
        "updated": outcome.result == "processed",
    }


def verify_user_subscriptions(engine: ReconciliationEngine, user_id: str) -> List[Dict[str, Any]]:
    """Run the verification poll for every subscription of a user that has a provider id."""
    subscriptions = engine.store.list_for_user(user_id)
    if not subscriptions:
        raise NotFound("No subscriptions found")

    results = []
    for subscription in subscriptions:
        if not subscription.mercadopago_subscription_id:
            results.append({
                "subscriptionId": subscription.id,
                "status": subscription.status,
                "error": "No MercadoPago subscription ID found",
            })
            continue
        try:
            result = verify_subscription(engine, subscription.mercadopago_subscription_id)
        except (ProviderUnavailable, NotFound) as e:
            result = {"subscriptionId": subscription.id, "status": subscription.status, "error": e.message}
        result["mercadoPagoId"] = subscription.mercadopago_subscription_id
        results.append(result)
    return results
