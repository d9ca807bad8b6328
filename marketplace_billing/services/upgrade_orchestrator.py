"""
Two-phase plan upgrade.

MercadoPago has no "replace subscription" operation, so a plan change is:

    Phase 1  create the new preapproval (creation flow, upgrade mode)
    Phase 2  cancel the old preapproval, then let the reconciliation engine
             activate the new one (webhook, or an immediate verification poll)

Each attempt is recorded as an ``UpgradeAttempt``. A Phase 1 failure touches
nothing and is safe to retry. A Phase 2 failure leaves two billing
preapprovals; it is recorded as ``partial_failure``, raised to the operator
alert logger and never retried automatically (retrying cancellation is safe,
retrying creation is not).
"""
import logging
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from marketplace_billing.core.credentials import CredentialSet
from marketplace_billing.core.logging_config import ALERT_LOGGER_NAME
from marketplace_billing.db.models.subscription import Subscription, SubscriptionStatus
from marketplace_billing.db.models.upgrade_attempt import UpgradeAttempt, UpgradeOutcome, UpgradePhase
from marketplace_billing.services.errors import (
    BillingError,
    NotFound,
    OwnershipMismatch,
    UpgradePartialFailure,
    ValidationFailure,
)
from marketplace_billing.services.mercadopago_client import MercadoPagoClient
from marketplace_billing.services.reconciliation_engine import ReconciliationEngine
from marketplace_billing.services.subscription_cancellation import cancel_subscription, ensure_cancellable
from marketplace_billing.services.subscription_creation import CreationResult, SubscriptionCreationFlow
from marketplace_billing.services.subscription_store import SubscriptionStore, utcnow
from marketplace_billing.services.verification import verify_subscription

logger = logging.getLogger(__name__)
alert_logger = logging.getLogger(ALERT_LOGGER_NAME)


class UpgradeOrchestrator:

    def __init__(
        self,
        db: Session,
        client: MercadoPagoClient,
        credentials: CredentialSet,
        dispatcher=None,
    ):
        self.db = db
        self.client = client
        self.credentials = credentials
        self.store = SubscriptionStore(db)
        self.engine = ReconciliationEngine(db, client, credentials, dispatcher=dispatcher)
        self.creation = SubscriptionCreationFlow(db, client, credentials)

    # ---------------------------------------------------------------- phase 1

    def start_upgrade(
        self,
        user_id: str,
        target_plan_id: str,
        card_token_id: str,
        existing_subscription_id: Optional[str] = None,
        payer_email: Optional[str] = None,
    ) -> Tuple[UpgradeAttempt, CreationResult]:
        """Phase 1: create the new subscription alongside the current one."""
        old = None
        if existing_subscription_id:
            old = self.store.get_subscription(existing_subscription_id)
            if not old:
                raise NotFound("Existing subscription not found")
            if old.user_id != user_id:
                raise OwnershipMismatch("Subscription does not belong to user")
            ensure_cancellable(old)
        else:
            old = self.store.find_live_for_user(user_id)

        if old is not None and old.plan_id == target_plan_id:
            raise ValidationFailure("User is already subscribed to this plan")

        attempt = self.store.create_upgrade_attempt(
            user_id=user_id,
            target_plan_id=target_plan_id,
            old_subscription_id=old.id if old else None,
            phase=UpgradePhase.CREATING.value,
            outcome=UpgradeOutcome.IN_PROGRESS.value,
        )
        logger.info(
            f"Upgrade phase 1 started: attempt_id={attempt.id}, user_id={user_id}, "
            f"old_subscription_id={attempt.old_subscription_id}, target_plan_id={target_plan_id}"
        )

        try:
            result = self.creation.create(
                plan_id=target_plan_id,
                user_id=user_id,
                card_token_id=card_token_id,
                payer_email=payer_email,
                is_upgrade=True,
                existing_subscription_id=None if payer_email else existing_subscription_id or attempt.old_subscription_id,
            )
        except BillingError as e:
            self.store.update_upgrade_attempt(
                attempt,
                outcome=UpgradeOutcome.FAILED.value,
                error=f"{e.code}: {e.message}",
                completed_at=utcnow(),
            )
            logger.warning(f"Upgrade phase 1 failed, nothing to undo: attempt_id={attempt.id}: {e.message}")
            e.extra.setdefault("upgradeAttemptId", attempt.id)
            raise

        self.store.update_upgrade_attempt(
            attempt,
            phase=UpgradePhase.CREATED.value,
            new_subscription_id=result.subscription.id,
        )
        logger.info(
            f"Upgrade phase 1 complete: attempt_id={attempt.id}, "
            f"new_subscription_id={result.subscription.id}, preapproval_id={result.preapproval_id}"
        )
        return attempt, result

    # ---------------------------------------------------------------- phase 2

    def change_plan(
        self,
        user_id: str,
        old_subscription_id: str,
        new_subscription_id: str,
        attempt_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Phase 2: cancel the old subscription and activate the new one.

        ``new_subscription_id`` may be the local id or the MercadoPago
        preapproval id. Safe to call again after a partial failure.
        """
        old = self.store.get_subscription(old_subscription_id)
        if not old:
            raise NotFound("Old subscription not found")
        if old.user_id != user_id:
            raise OwnershipMismatch("Subscription does not belong to user")

        new = self.store.get_subscription(new_subscription_id) or self.store.get_by_provider_id(new_subscription_id)
        if not new:
            raise NotFound("New subscription not found. Please wait a moment and try again.")
        if new.user_id != user_id:
            raise OwnershipMismatch("New subscription does not belong to user")
        if new.id == old.id:
            raise ValidationFailure("Old and new subscription must differ")
        ensure_cancellable(old)

        attempt = self._attempt_for(user_id, old, new, attempt_id)
        self.store.update_upgrade_attempt(attempt, phase=UpgradePhase.CANCELLING.value, error=None)

        try:
            cancel_subscription(
                self.store,
                self.client,
                self.credentials,
                old,
                reason="Plan changed",
                dispatcher=self.engine.dispatcher,
                metadata_patch={"newSubscriptionId": new.id},
            )
        except Exception as e:
            self.db.rollback()
            self.store.update_upgrade_attempt(
                attempt,
                outcome=UpgradeOutcome.PARTIAL_FAILURE.value,
                error=str(e),
            )
            alert_logger.critical(
                f"UPGRADE PARTIAL FAILURE: attempt_id={attempt.id}, user_id={user_id}, "
                f"old_subscription_id={old.id} (preapproval {old.mercadopago_subscription_id}) may still be billing "
                f"alongside new_subscription_id={new.id}: {e}"
            )
            raise UpgradePartialFailure(
                "New subscription was created but the previous one could not be cancelled. "
                "Support has been notified.",
                attempt_id=attempt.id,
                extra={"oldSubscriptionId": old.id, "newSubscriptionId": new.id},
            )

        self.store.update_subscription(
            new,
            metadata_patch={"previousSubscriptionId": old.id, "upgradedFrom": old.plan_name},
        )
        new_status = self._ensure_active(new)

        self.store.update_upgrade_attempt(
            attempt,
            phase=UpgradePhase.COMPLETED.value,
            outcome=UpgradeOutcome.SUCCEEDED.value,
            completed_at=utcnow(),
        )
        logger.info(
            f"Plan changed: attempt_id={attempt.id}, user_id={user_id}, old_subscription_id={old.id}, "
            f"new_subscription_id={new.id}, new_status={new_status}"
        )
        return {
            "upgradeAttemptId": attempt.id,
            "oldSubscriptionId": old.id,
            "oldStatus": self.store.get_subscription(old.id).status,
            "newSubscriptionId": new.id,
            "newStatus": new_status,
            "newPlanName": new.plan_name,
        }

    # ------------------------------------------------------------- one call

    def upgrade(
        self,
        user_id: str,
        target_plan_id: str,
        card_token_id: str,
        existing_subscription_id: Optional[str] = None,
        payer_email: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Run both phases."""
        attempt, result = self.start_upgrade(
            user_id, target_plan_id, card_token_id,
            existing_subscription_id=existing_subscription_id,
            payer_email=payer_email,
        )
        response = {
            "upgradeAttemptId": attempt.id,
            "subscriptionId": result.preapproval_id,
            "localSubscriptionId": result.subscription.id,
            "initPoint": result.init_point,
        }
        if not attempt.old_subscription_id:
            self.store.update_upgrade_attempt(
                attempt,
                phase=UpgradePhase.COMPLETED.value,
                outcome=UpgradeOutcome.SUCCEEDED.value,
                completed_at=utcnow(),
            )
            return response

        response.update(self.change_plan(user_id, attempt.old_subscription_id, result.subscription.id, attempt.id))
        return response

    # -------------------------------------------------------------- helpers

    def _attempt_for(self, user_id: str, old: Subscription, new: Subscription, attempt_id: Optional[str]) -> UpgradeAttempt:
        if attempt_id:
            attempt = self.store.get_upgrade_attempt(attempt_id)
            if not attempt:
                raise NotFound("Upgrade attempt not found")
            if attempt.user_id != user_id:
                raise OwnershipMismatch("Upgrade attempt does not belong to user")
            if (
                attempt.old_subscription_id != old.id
                or attempt.new_subscription_id not in (None, new.id)
                or attempt.outcome == UpgradeOutcome.FAILED.value
            ):
                raise ValidationFailure(
                    "Upgrade attempt does not match this plan change",
                    extra={"upgradeAttemptId": attempt.id},
                )
            return attempt
        attempt = self.store.find_open_upgrade_attempt(old.id, new.id)
        if attempt:
            return attempt
        # Phase 1 ran through subscription-create without an attempt id
        return self.store.create_upgrade_attempt(
            user_id=user_id,
            target_plan_id=new.plan_id,
            old_subscription_id=old.id,
            new_subscription_id=new.id,
            phase=UpgradePhase.CREATED.value,
            outcome=UpgradeOutcome.IN_PROGRESS.value,
        )

    def _ensure_active(self, new: Subscription) -> str:
        """Poll MercadoPago once so the new row does not wait for its webhook."""
        if new.status != SubscriptionStatus.PENDING.value or not new.mercadopago_subscription_id:
            return new.status
        try:
            result = verify_subscription(self.engine, new.mercadopago_subscription_id)
        except BillingError as e:
            logger.warning(
                f"New subscription {new.id} not verified yet, waiting for webhook: {e.message}"
            )
            return new.status
        return result.get("status") or new.status
