import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from marketplace_billing.core.credentials import CredentialSet
from marketplace_billing.core.dependencies import (
    get_credentials,
    get_dispatcher,
    get_engine,
    get_mercadopago_client,
)
from marketplace_billing.db.session import get_db
from marketplace_billing.schemas.billing import (
    ERROR_RESPONSES,
    ChangePlanRequest,
    CreateSubscriptionRequest,
    CreateSubscriptionResponse,
    UnsubscribeRequest,
    UpgradeAttemptListResponse,
    UpgradeAttemptResponse,
    UpgradeRequest,
    VerificationListResponse,
    VerificationResponse,
)
from marketplace_billing.services.errors import ValidationFailure
from marketplace_billing.services.mercadopago_client import MercadoPagoClient
from marketplace_billing.services.reconciliation_engine import ReconciliationEngine
from marketplace_billing.services.side_effects import SideEffectDispatcher
from marketplace_billing.services.subscription_cancellation import unsubscribe
from marketplace_billing.services.subscription_creation import SubscriptionCreationFlow
from marketplace_billing.services.upgrade_orchestrator import UpgradeOrchestrator
from marketplace_billing.services.verification import verify_subscription, verify_user_subscriptions

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/mercadopago", tags=["MercadoPago Subscriptions"], responses=ERROR_RESPONSES)


def get_orchestrator(
    db: Session = Depends(get_db),
    client: MercadoPagoClient = Depends(get_mercadopago_client),
    credentials: CredentialSet = Depends(get_credentials),
    dispatcher: SideEffectDispatcher = Depends(get_dispatcher),
) -> UpgradeOrchestrator:
    return UpgradeOrchestrator(db, client, credentials, dispatcher=dispatcher)


# ✅ CREATE SUBSCRIPTION
@router.post("/subscription-create", response_model=CreateSubscriptionResponse, response_model_exclude_none=True)
def create_subscription(
    payload: CreateSubscriptionRequest,
    db: Session = Depends(get_db),
    client: MercadoPagoClient = Depends(get_mercadopago_client),
    credentials: CredentialSet = Depends(get_credentials),
    orchestrator: UpgradeOrchestrator = Depends(get_orchestrator),
):
    """
    Create a MercadoPago preapproval for a plan.

    With ``isUpgrade`` this is phase 1 of a plan change: the current
    subscription stays live until ``/mercadopago/change-plan`` is called.
    """
    attempt_id = None
    if payload.is_upgrade:
        attempt, result = orchestrator.start_upgrade(
            user_id=payload.user_id,
            target_plan_id=payload.plan_id,
            card_token_id=payload.card_token_id,
            existing_subscription_id=payload.existing_subscription_id,
            payer_email=payload.payer_email,
        )
        attempt_id = attempt.id
    else:
        result = SubscriptionCreationFlow(db, client, credentials).create(
            plan_id=payload.plan_id,
            user_id=payload.user_id,
            card_token_id=payload.card_token_id,
            payer_email=payload.payer_email,
            existing_subscription_id=payload.existing_subscription_id,
        )

    return {
        "subscriptionId": result.preapproval_id,
        "initPoint": result.init_point,
        "localSubscriptionId": result.subscription.id,
        "publicKey": credentials.subscriptions_public_key,
        "upgradeAttemptId": attempt_id,
    }


# ✅ CHANGE PLAN (UPGRADE PHASE 2)
@router.post("/change-plan")
def change_plan(payload: ChangePlanRequest, orchestrator: UpgradeOrchestrator = Depends(get_orchestrator)):
    return orchestrator.change_plan(
        user_id=payload.user_id,
        old_subscription_id=payload.old_subscription_id,
        new_subscription_id=payload.new_subscription_id,
        attempt_id=payload.upgrade_attempt_id,
    )


# ✅ ONE-CALL UPGRADE
@router.post("/upgrade")
def upgrade(payload: UpgradeRequest, orchestrator: UpgradeOrchestrator = Depends(get_orchestrator)):
    return orchestrator.upgrade(
        user_id=payload.user_id,
        target_plan_id=payload.plan_id,
        card_token_id=payload.card_token_id,
        existing_subscription_id=payload.existing_subscription_id,
        payer_email=payload.payer_email,
    )


# ✅ VERIFICATION POLL
@router.get(
    "/check-subscription-status",
    responses={200: {"model": VerificationResponse, "description": "One result, or a results list when polled by userId"}},
)
def check_subscription_status(
    subscription_id: Optional[str] = Query(None, alias="subscriptionId"),
    user_id: Optional[str] = Query(None, alias="userId"),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """
    Reconcile a subscription against MercadoPago without waiting for a webhook.

    ``subscriptionId`` is the MercadoPago preapproval ID. With ``userId`` every
    subscription of that user is checked.
    """
    if subscription_id:
        return VerificationResponse(**verify_subscription(engine, subscription_id))
    if user_id:
        results = verify_user_subscriptions(engine, user_id)
        return VerificationListResponse(results=[VerificationResponse(**result) for result in results])
    raise ValidationFailure("subscriptionId or userId is required")


# ✅ UNSUBSCRIBE
@router.post("/unsubscribe")
def unsubscribe_route(
    payload: UnsubscribeRequest,
    engine: ReconciliationEngine = Depends(get_engine),
):
    return unsubscribe(
        engine.store,
        engine.client,
        engine.credentials,
        user_id=payload.user_id,
        subscription_id=payload.subscription_id,
        dispatcher=engine.dispatcher,
    )


# ✅ UPGRADE ATTEMPTS (OPERATOR VIEW)
@router.get("/upgrade-attempts", response_model=UpgradeAttemptListResponse)
def list_upgrade_attempts(
    user_id: Optional[str] = Query(None, alias="userId"),
    outcome: Optional[str] = Query(None, description="in_progress, succeeded, failed or partial_failure"),
    orchestrator: UpgradeOrchestrator = Depends(get_orchestrator),
):
    attempts = orchestrator.store.list_upgrade_attempts(user_id=user_id, outcome=outcome)
    return {"attempts": [UpgradeAttemptResponse.model_validate(attempt) for attempt in attempts]}
