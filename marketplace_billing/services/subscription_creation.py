"""
Subscription creation flow.

Creates a MercadoPago preapproval from a synced plan and a single-use card
token, then persists the local ``pending`` row. Activation is left to the
reconciliation engine (webhook or verification poll).
"""
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

from sqlalchemy.orm import Session

from marketplace_billing.core import config
from marketplace_billing.core.credentials import CredentialSet
from marketplace_billing.core.logging_config import mask_email, mask_identifier
from marketplace_billing.db.models.subscription import Subscription
from marketplace_billing.db.models.plan import Plan
from marketplace_billing.services import external_reference
from marketplace_billing.services.errors import (
    ConfigurationError,
    DuplicateActiveSubscription,
    MissingPayerEmail,
    NotFound,
    OwnershipMismatch,
    PlanNotSynced,
    ProviderUnavailable,
    ValidationFailure,
)
from marketplace_billing.services.mercadopago_client import MercadoPagoClient, MercadoPagoError
from marketplace_billing.services.subscription_store import SubscriptionStore, utcnow

logger = logging.getLogger(__name__)

FALLBACK_BASE_URL = "https://example.com"

# billing_cycle -> (frequency, frequency_type)
BILLING_FREQUENCIES = {
    "daily": (1, "days"),
    "weekly": (7, "days"),
    "monthly": (1, "months"),
    "yearly": (12, "months"),
}


@dataclass
class CreationResult:
    subscription: Subscription
    preapproval_id: str
    init_point: Optional[str]
    plan: Plan


@dataclass
class PaymentContext:
    """Payer email and stored card reference carried over from a prior subscription."""
    payer_email: Optional[str]
    card_id: Optional[str]


def build_back_url(base_url: Optional[str] = None) -> str:
    """Return URL after checkout; falls back to a placeholder origin if unset or invalid."""
    raw = base_url if base_url is not None else config.PUBLIC_BASE_URL
    parsed = urlparse(raw or "")
    if parsed.scheme in ("http", "https") and parsed.netloc:
        origin = f"{parsed.scheme}://{parsed.netloc}"
    else:
        if raw:
            logger.warning(f"PUBLIC_BASE_URL invalid, using fallback: {raw!r}")
        origin = FALLBACK_BASE_URL
    return f"{origin}/subscription/complete"


def auto_recurring_for(plan: Plan) -> dict:
    frequency, frequency_type = BILLING_FREQUENCIES.get(plan.billing_cycle, BILLING_FREQUENCIES["monthly"])
    return {
        "frequency": frequency,
        "frequency_type": frequency_type,
        "transaction_amount": plan.price,
        "currency_id": plan.currency or "ARS",
    }


class SubscriptionCreationFlow:
    """Validates inputs, creates the preapproval and persists the pending row."""

    def __init__(self, db: Session, client: MercadoPagoClient, credentials: CredentialSet):
        self.db = db
        self.client = client
        self.credentials = credentials
        self.store = SubscriptionStore(db)

    def create(
        self,
        plan_id: str,
        user_id: str,
        card_token_id: str,
        payer_email: Optional[str] = None,
        is_upgrade: bool = False,
        existing_subscription_id: Optional[str] = None,
    ) -> CreationResult:
        """
        Create a subscription for ``user_id`` on ``plan_id``.

        Raises:
            BillingError subclasses for validation failures (4xx) and
            ProviderUnavailable when MercadoPago rejects or cannot be reached.
        """
        if not plan_id or not user_id:
            raise ValidationFailure("Plan ID and User ID are required")
        if not card_token_id:
            raise ValidationFailure("Card token ID is required for all subscriptions")
        if not existing_subscription_id and not payer_email:
            raise MissingPayerEmail("Payer email is required for new subscriptions")

        access_token = self.credentials.subscriptions_access_token
        if not access_token:
            raise ConfigurationError("MercadoPago subscriptions credentials not configured")

        plan = self.store.get_plan(plan_id)
        if not plan:
            raise NotFound("Plan not found")
        if not plan.is_synced:
            logger.error(f"Plan without mercadopago_plan_id: plan_id={plan_id}, name={plan.name}")
            raise PlanNotSynced("Plan is not synced with MercadoPago (missing mercadopago_plan_id)")

        user = self.store.get_user(user_id)
        if not user:
            raise NotFound("User not found")

        existing = self.store.find_live_for_user(user_id)
        if existing and not is_upgrade:
            logger.info(f"User already has a live subscription: user_id={user_id}, subscription_id={existing.id}")
            raise DuplicateActiveSubscription(
                "User already has an active subscription",
                extra={"existingSubscription": existing.id},
            )
        if existing and is_upgrade:
            logger.info(
                f"Upgrade mode: user_id={user_id} keeps subscription_id={existing.id} "
                f"until the plan change completes"
            )

        context = PaymentContext(payer_email=payer_email, card_id=None)
        if existing_subscription_id:
            context = self.resolve_payment_context(existing_subscription_id, user_id, access_token)
        if not context.payer_email:
            raise MissingPayerEmail(
                "No subscription email found. Please ensure the original subscription "
                "was created with a valid email address."
            )

        reference = external_reference.encode(plan.id, user_id)
        back_url = build_back_url()
        body = {
            "preapproval_plan_id": plan.mercadopago_plan_id,
            "reason": f"Subscription to {plan.name}",
            "external_reference": reference,
            "payer_email": context.payer_email,
            "card_token_id": card_token_id,
            "auto_recurring": auto_recurring_for(plan),
            "back_url": back_url,
            "status": "authorized",
        }

        logger.info(
            f"Creating preapproval: plan_id={plan.id}, user_id={user_id}, "
            f"payer_email={mask_email(context.payer_email)}, card_token={mask_identifier(card_token_id)}, "
            f"reusing_card={bool(context.card_id)}, external_reference={reference}"
        )
        try:
            preapproval = self.client.create_preapproval(body, access_token)
        except MercadoPagoError as e:
            logger.error(f"Preapproval creation failed: plan_id={plan.id}, user_id={user_id}: {e}")
            raise ProviderUnavailable(f"Failed to create subscription: {e}", extra={"providerStatus": e.status_code})

        metadata = {
            "initPoint": preapproval.get("init_point"),
            "externalReference": reference,
            "backUrl": back_url,
            "cardTokenId": card_token_id,
            "mercadoPagoStatus": preapproval.get("status"),
        }
        if context.card_id:
            metadata["cardId"] = context.card_id

        subscription = self.store.create_subscription(
            user_id=user_id,
            plan_id=plan.id,
            plan_name=plan.name,
            mercadopago_subscription_id=str(preapproval.get("id")),
            subscription_email=context.payer_email,
            amount=plan.price,
            currency=plan.currency or "ARS",
            billing_cycle=plan.billing_cycle,
            start_date=utcnow(),
            details=metadata,
        )

        return CreationResult(
            subscription=subscription,
            preapproval_id=str(preapproval.get("id")),
            init_point=preapproval.get("init_point"),
            plan=plan,
        )

    def resolve_payment_context(self, existing_subscription_id: str, user_id: str, access_token: str) -> PaymentContext:
        """
        Read the payer email and card id of a prior subscription.

        The stored values win; MercadoPago's current preapproval object is the
        fallback. The card id is kept for reference only and is never sent as a
        token.
        """
        existing = self.store.get_subscription(existing_subscription_id)
        if not existing:
            raise NotFound("Existing subscription not found")
        if existing.user_id != user_id:
            raise OwnershipMismatch("Subscription does not belong to user")

        payer_email = existing.subscription_email
        card_id = (existing.details or {}).get("cardId")

        if (not card_id or not payer_email) and existing.mercadopago_subscription_id:
            try:
                remote = self.client.get_preapproval(existing.mercadopago_subscription_id, access_token)
            except MercadoPagoError as e:
                logger.warning(
                    f"Could not read preapproval {existing.mercadopago_subscription_id} "
                    f"for payment context: {e}"
                )
                remote = {}
            card_id = card_id or (str(remote["card_id"]) if remote.get("card_id") else None)
            payer_email = payer_email or remote.get("payer_email")

        logger.info(
            f"Payment context from subscription_id={existing.id}: "
            f"email={mask_email(payer_email) if payer_email else 'NOT FOUND'}, card_id={mask_identifier(card_id)}"
        )
        return PaymentContext(payer_email=payer_email, card_id=card_id)
