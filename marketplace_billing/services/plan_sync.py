"""
Plan sync: publishes local plans to MercadoPago as preapproval plans.

A plan must carry a ``mercadopago_plan_id`` before subscriptions can be
created from it. Syncing updates the remote plan when one is already linked
and creates a fresh one when the update is rejected (deleted or foreign plan).
"""
import logging
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from marketplace_billing.core.credentials import CredentialSet
from marketplace_billing.db.models.plan import Plan
from marketplace_billing.services.errors import (
    BillingError,
    ConfigurationError,
    NotFound,
    ProviderUnavailable,
    ValidationFailure,
)
from marketplace_billing.services.mercadopago_client import MercadoPagoClient, MercadoPagoError
from marketplace_billing.services.subscription_creation import auto_recurring_for, build_back_url
from marketplace_billing.services.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)


def build_plan_body(plan: Plan, back_url: str) -> Dict[str, Any]:
    return {
        "reason": f"Subscription: {plan.name}",
        "auto_recurring": auto_recurring_for(plan),
        "back_url": back_url,
        "external_reference": plan.id,
    }


class PlanSyncService:
    """Creates or updates preapproval plans with the subscriptions credential."""

    def __init__(self, db: Session, client: MercadoPagoClient, credentials: CredentialSet):
        self.client = client
        self.credentials = credentials
        self.store = SubscriptionStore(db)

    def _access_token(self) -> str:
        access_token = self.credentials.subscriptions_access_token
        if not access_token:
            raise ConfigurationError("MercadoPago subscriptions credentials not configured")
        return access_token

    def sync_plan(self, plan_id: str) -> Dict[str, Any]:
        """
        Push one plan to MercadoPago and store the remote id on the plan.

        Returns:
            Dict with planId, mercadoPagoPlanId and whether a new remote plan
            was created.

        Raises:
            ValidationFailure, NotFound, ConfigurationError, ProviderUnavailable
        """
        if not plan_id:
            raise ValidationFailure("Plan ID is required")
        access_token = self._access_token()

        plan = self.store.get_plan(plan_id)
        if not plan:
            raise NotFound("Plan not found")

        body = build_plan_body(plan, build_back_url())
        logger.info(
            f"Syncing plan: plan_id={plan.id}, name={plan.name}, cycle={plan.billing_cycle}, "
            f"amount={plan.price} {plan.currency}, linked={plan.mercadopago_plan_id}"
        )

        remote = None
        if plan.mercadopago_plan_id:
            try:
                remote = self.client.update_preapproval_plan(plan.mercadopago_plan_id, body, access_token)
            except MercadoPagoError as e:
                logger.warning(
                    f"Preapproval plan update failed, creating a new one: plan_id={plan.id}, "
                    f"mercadopago_plan_id={plan.mercadopago_plan_id}: {e}"
                )

        created = remote is None
        if created:
            try:
                remote = self.client.create_preapproval_plan(body, access_token)
            except MercadoPagoError as e:
                logger.error(f"Preapproval plan creation failed: plan_id={plan.id}: {e}")
                raise ProviderUnavailable(
                    f"Failed to sync plan with MercadoPago: {e}", extra={"providerStatus": e.status_code}
                )

        remote_id = str(remote.get("id") or plan.mercadopago_plan_id)
        if remote_id != plan.mercadopago_plan_id:
            self.store.update_plan(plan, mercadopago_plan_id=remote_id)
        logger.info(f"Plan synced: plan_id={plan.id}, mercadopago_plan_id={remote_id}, created={created}")

        return {"planId": plan.id, "mercadoPagoPlanId": remote_id, "created": created}

    def sync_all(self) -> Dict[str, Any]:
        """Sync every active plan; one plan failing does not stop the rest."""
        self._access_token()

        results: List[Dict[str, Any]] = []
        for plan in self.store.list_plans(active_only=True):
            try:
                results.append({"success": True, **self.sync_plan(plan.id)})
            except BillingError as e:
                logger.error(f"Plan sync failed: plan_id={plan.id}: {e.message}")
                results.append({"success": False, "planId": plan.id, "error": e.message})

        succeeded = sum(1 for result in results if result["success"])
        return {"success": succeeded, "errors": len(results) - succeeded, "results": results}

    def list_plans(self) -> List[Dict[str, Any]]:
        """Local plans with the state of their linked remote plan."""
        access_token = self._access_token()

        plans = []
        for plan in self.store.list_plans():
            remote_status = "not_synced"
            if plan.mercadopago_plan_id:
                try:
                    remote = self.client.get_preapproval_plan(plan.mercadopago_plan_id, access_token)
                    remote_status = remote.get("status") or "active"
                except MercadoPagoError as e:
                    remote_status = "not_found" if e.status_code == 404 else "error"
                    logger.warning(f"Could not read preapproval plan for plan_id={plan.id}: {e}")
            plans.append({
                "planId": plan.id,
                "name": plan.name,
                "price": plan.price,
                "currency": plan.currency,
                "billingCycle": plan.billing_cycle,
                "isActive": plan.is_active,
                "mercadoPagoPlanId": plan.mercadopago_plan_id,
                "mercadoPagoStatus": remote_status,
            })
        return plans
