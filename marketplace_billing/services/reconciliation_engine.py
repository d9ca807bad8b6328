"""
Reconciliation engine for MercadoPago notifications.

Takes a raw webhook payload, re-fetches the authoritative provider object,
correlates it to local rows and applies the subscription state machine.

Notifications are delivered at least once and in any order. The engine never
trusts the status embedded in a payload: every step reads the current provider
object, so the last fetch wins and duplicate or reordered deliveries converge
on the same local state.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from marketplace_billing.core.credentials import (
    AllCandidatesFailed,
    CredentialResolver,
    CredentialSet,
    first_success,
)
from marketplace_billing.db.models.payment import PaymentStatus
from marketplace_billing.db.models.subscription import Subscription, SubscriptionStatus
from marketplace_billing.services import external_reference
from marketplace_billing.services.mercadopago_client import MercadoPagoClient
from marketplace_billing.services.side_effects import SideEffectDispatcher, dispatch_entitlement_refresh
from marketplace_billing.services.subscription_state import apply_transition, target_for_provider_status
from marketplace_billing.services.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)

PAYMENT_TYPES = {"payment"}
PREAPPROVAL_TYPES = {"preapproval", "subscription_preapproval"}
RECURRING_PAYMENT = "recurring_payment"

PAYMENT_STATUS_MAP = {
    "approved": PaymentStatus.APPROVED,
    "pending": PaymentStatus.PENDING,
    "in_process": PaymentStatus.PENDING,
    "authorized": PaymentStatus.PENDING,
    "rejected": PaymentStatus.REJECTED,
    "cancelled": PaymentStatus.CANCELLED,
    "refunded": PaymentStatus.REFUNDED,
    "charged_back": PaymentStatus.REFUNDED,
}


def map_payment_status(provider_status: Optional[str]) -> PaymentStatus:
    return PAYMENT_STATUS_MAP.get(str(provider_status or "").lower(), PaymentStatus.PENDING)


def classify(notification: Dict[str, Any]) -> Optional[str]:
    """Return "payment", "preapproval" or None for unhandled types."""
    notification_type = (notification or {}).get("type")
    if notification_type in PAYMENT_TYPES:
        return "payment"
    if notification_type in PREAPPROVAL_TYPES:
        return "preapproval"
    return None


@dataclass
class ReconciliationOutcome:
    """What a single delivery did; logged and echoed in the webhook response."""
    kind: str                      # payment | preapproval | ignored
    result: str                    # processed | duplicate | no_op | ignored | correlation_miss | fetch_failed
    provider_id: Optional[str] = None
    subscription_id: Optional[str] = None
    payment_id: Optional[str] = None
    booking_id: Optional[str] = None
    previous_status: Optional[str] = None
    status: Optional[str] = None
    entitlements_refreshed: bool = False
    detail: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        body = {
            "kind": self.kind,
            "result": self.result,
            "providerId": self.provider_id,
            "subscriptionId": self.subscription_id,
            "paymentId": self.payment_id,
            "bookingId": self.booking_id,
            "previousStatus": self.previous_status,
            "status": self.status,
            "entitlementsRefreshed": self.entitlements_refreshed,
            "detail": self.detail,
        }
        return {key: value for key, value in body.items() if value is not None}


class ReconciliationEngine:
    """One engine per request; holds the request-scoped session."""

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
        self.resolver = CredentialResolver(credentials, db)
        self.dispatcher = dispatcher or SideEffectDispatcher(db)

    # ------------------------------------------------------------------ entry

    def handle_notification(self, notification: Dict[str, Any]) -> ReconciliationOutcome:
        """
        Process one webhook delivery.

        Provider/transport failures and correlation misses are returned as
        outcomes, not raised; the caller acknowledges every delivery.
        """
        kind = classify(notification)
        provider_id = _data_id(notification)
        action = (notification or {}).get("action")

        if kind is None:
            logger.info(f"Ignoring notification type={notification.get('type') if notification else None}, action={action}")
            return ReconciliationOutcome(kind="ignored", result="ignored", provider_id=provider_id,
                                         detail="unhandled notification type")

        if not provider_id:
            logger.error(f"Notification without data.id: type={notification.get('type')}, action={action}")
            return ReconciliationOutcome(kind=kind, result="ignored", detail="missing data.id")

        if kind == "payment":
            return self.process_payment_notification(notification, provider_id)
        return self.process_preapproval_notification(provider_id, action=action)

    # --------------------------------------------------------------- payments

    def fetch_payment(self, notification: Dict[str, Any], payment_id: str) -> Dict[str, Any]:
        candidates = self.resolver.candidates(notification)
        payment, index = first_success(
            candidates, lambda token: self.client.get_payment(payment_id, token)
        )
        logger.debug(f"Payment {payment_id} fetched with candidate credential {index + 1}/{len(candidates)}")
        return payment

    def process_payment_notification(self, notification: Dict[str, Any], payment_id: str) -> ReconciliationOutcome:
        try:
            payment = self.fetch_payment(notification, payment_id)
        except AllCandidatesFailed as e:
            logger.error(
                f"Could not retrieve payment details: payment_id={payment_id}, "
                f"mercadopago_user_id={notification.get('user_id')}, action={notification.get('action')}: {e}"
            )
            return ReconciliationOutcome(kind="payment", result="fetch_failed", provider_id=payment_id, detail=str(e))

        if payment.get("operation_type") == RECURRING_PAYMENT:
            return self.record_recurring_payment(payment)
        return self.process_booking_payment(payment)

    def record_recurring_payment(self, payment: Dict[str, Any]) -> ReconciliationOutcome:
        """
        Append the charge to the payment ledger and, for approved charges,
        reconcile the owning subscription from its authoritative preapproval.
        """
        provider_payment_id = str(payment.get("id"))
        reference_string = _payment_reference(payment)
        reference = external_reference.try_decode(reference_string)
        preapproval_id = _payment_preapproval_id(payment)

        subscription = self.store.get_by_provider_id(preapproval_id) if preapproval_id else None
        if subscription is None and reference is not None:
            subscription = self._match_by_reference(reference, preapproval_id)

        status = map_payment_status(payment.get("status"))
        row, created = self.store.insert_payment_if_absent(
            mercadopago_payment_id=provider_payment_id,
            mercadopago_subscription_id=preapproval_id,
            subscription_id=subscription.id if subscription else None,
            user_id=subscription.user_id if subscription else (reference.user_id if reference else None),
            amount=payment.get("transaction_amount"),
            currency=payment.get("currency_id"),
            status=status.value,
            status_detail=payment.get("status_detail"),
            operation_type=payment.get("operation_type"),
            payment_method=_payment_method_type(payment),
            external_reference=reference_string,
            description=payment.get("description") or "Recurring payment for subscription",
            provider_data=_payment_snapshot(payment),
        )

        outcome = ReconciliationOutcome(
            kind="payment",
            result="processed",
            provider_id=provider_payment_id,
            payment_id=row.id,
            subscription_id=subscription.id if subscription else None,
        )

        if not created and row.processed_at is not None:
            logger.info(f"Duplicate recurring payment delivery ignored: payment_id={provider_payment_id}")
            outcome.result = "duplicate"
            return outcome

        if status != PaymentStatus.APPROVED:
            level = logging.WARNING if status == PaymentStatus.REJECTED else logging.INFO
            logger.log(
                level,
                f"Recurring payment not approved: payment_id={provider_payment_id}, "
                f"status={payment.get('status')}, status_detail={payment.get('status_detail')}, "
                f"subscription_id={outcome.subscription_id}"
            )
            self.store.mark_payment_processed(row)
            outcome.status = status.value
            return outcome

        target_preapproval = preapproval_id or (subscription.mercadopago_subscription_id if subscription else None)
        if not target_preapproval:
            logger.warning(
                f"Approved recurring payment without a correlatable subscription: "
                f"payment_id={provider_payment_id}, external_reference={reference_string}"
            )
            self.store.mark_payment_processed(row)
            outcome.result = "correlation_miss"
            return outcome

        sub_outcome = self.process_preapproval_notification(target_preapproval, action="payment")
        self.store.mark_payment_processed(row)

        outcome.subscription_id = sub_outcome.subscription_id or outcome.subscription_id
        outcome.previous_status = sub_outcome.previous_status
        outcome.status = sub_outcome.status
        outcome.entitlements_refreshed = sub_outcome.entitlements_refreshed
        if sub_outcome.result in ("correlation_miss", "fetch_failed"):
            outcome.result = sub_outcome.result
            outcome.detail = sub_outcome.detail
        return outcome

    def process_booking_payment(self, payment: Dict[str, Any]) -> ReconciliationOutcome:
        """One-off checkout payment for a booking."""
        provider_payment_id = str(payment.get("id"))
        metadata = _object(payment.get("metadata"))
        booking_id = (
            payment.get("external_reference")
            or metadata.get("bookingId")
            or metadata.get("booking_id")
            or (metadata.get("external_reference") if isinstance(metadata.get("external_reference"), str) else None)
        )
        outcome = ReconciliationOutcome(kind="payment", result="processed", provider_id=provider_payment_id,
                                        booking_id=booking_id, status=payment.get("status"))

        if not booking_id:
            logger.error(f"Booking payment missing external_reference or metadata bookingId: payment_id={provider_payment_id}")
            outcome.result = "correlation_miss"
            return outcome

        booking = self.store.get_booking(booking_id)
        if not booking:
            logger.warning(f"Booking not found for payment: booking_id={booking_id}, payment_id={provider_payment_id}")
            outcome.result = "correlation_miss"
            return outcome

        payment_status = payment.get("status")
        if payment_status == "approved":
            if booking.status == "paid":
                logger.info(f"Booking already marked as paid, skipping update: booking_id={booking_id}")
                outcome.result = "duplicate"
                return outcome
            self.store.mark_booking_paid(booking, {
                "mercadoPagoPaymentId": provider_payment_id,
                "paymentStatus": payment_status,
                "paymentStatusDetail": payment.get("status_detail"),
                "transactionAmount": payment.get("transaction_amount"),
                "paymentMethod": payment.get("payment_method_id"),
            })
            logger.info(f"Booking marked as paid: booking_id={booking_id}, payment_id={provider_payment_id}")
        elif payment_status == "rejected":
            logger.warning(
                f"Booking payment rejected: booking_id={booking_id}, payment_id={provider_payment_id}, "
                f"status_detail={payment.get('status_detail')}"
            )
            outcome.result = "no_op"
        else:
            logger.info(f"Booking payment status: booking_id={booking_id}, payment_id={provider_payment_id}, status={payment_status}")
            outcome.result = "no_op"
        return outcome

    # ------------------------------------------------------------ preapprovals

    def fetch_preapproval(self, preapproval_id: str) -> Dict[str, Any]:
        preapproval, _ = first_success(
            self.resolver.subscription_candidates(),
            lambda token: self.client.get_preapproval(preapproval_id, token),
        )
        return preapproval

    def process_preapproval_notification(self, preapproval_id: str, action: Optional[str] = None) -> ReconciliationOutcome:
        try:
            preapproval = self.fetch_preapproval(preapproval_id)
        except AllCandidatesFailed as e:
            logger.error(f"Could not retrieve preapproval details: preapproval_id={preapproval_id}, action={action}: {e}")
            return ReconciliationOutcome(kind="preapproval", result="fetch_failed", provider_id=preapproval_id, detail=str(e))
        return self.reconcile_preapproval(preapproval)

    def reconcile_preapproval(self, preapproval: Dict[str, Any]) -> ReconciliationOutcome:
        """Apply the transition implied by an authoritative preapproval object."""
        preapproval_id = str(preapproval.get("id"))
        provider_status = preapproval.get("status")
        reference_string = preapproval.get("external_reference")
        outcome = ReconciliationOutcome(kind="preapproval", result="processed", provider_id=preapproval_id)

        reference = external_reference.try_decode(reference_string)
        if reference is None:
            logger.error(f"Invalid external reference on preapproval {preapproval_id}: {reference_string!r}")
            outcome.result = "ignored"
            outcome.detail = "invalid external reference"
            return outcome

        subscription = self.locate_subscription(preapproval_id, reference)
        if subscription is None:
            logger.warning(
                f"Subscription record not found: preapproval_id={preapproval_id}, "
                f"user_id={reference.user_id}, plan_id={reference.plan_id}, status={provider_status}"
            )
            outcome.result = "correlation_miss"
            return outcome

        outcome.subscription_id = subscription.id
        outcome.previous_status = subscription.status

        target = target_for_provider_status(provider_status)
        if target is None:
            logger.info(
                f"Preapproval status {provider_status!r} has no local mapping, leaving "
                f"subscription_id={subscription.id} as {subscription.status}"
            )
            outcome.result = "no_op"
            outcome.status = subscription.status
            return outcome

        metadata_patch = {"mercadoPagoStatus": provider_status}
        if target == SubscriptionStatus.ACTIVE and preapproval.get("card_id"):
            metadata_patch["cardId"] = str(preapproval["card_id"])

        transition = apply_transition(self.store, subscription, target, metadata_patch=metadata_patch)
        outcome.status = transition.current
        if not transition.changed:
            outcome.result = "no_op"
            outcome.detail = transition.reason
            return outcome

        if transition.affects_entitlements:
            outcome.entitlements_refreshed = dispatch_entitlement_refresh(self.dispatcher, subscription.user_id)

        logger.info(
            f"Subscription status updated: subscription_id={subscription.id}, user_id={subscription.user_id}, "
            f"preapproval_id={preapproval_id}, {transition.previous} -> {transition.current}"
        )
        return outcome

    # ------------------------------------------------------------ correlation

    def locate_subscription(self, preapproval_id: str, reference) -> Optional[Subscription]:
        """
        Find the local row for a preapproval: provider id first, then the
        user's live subscriptions for the referenced plan. A fallback match has
        its provider id backfilled.
        """
        subscription = self.store.get_by_provider_id(preapproval_id)
        if subscription is not None:
            return subscription
        return self._match_by_reference(reference, preapproval_id)

    def _match_by_reference(self, reference, preapproval_id: Optional[str]) -> Optional[Subscription]:
        matches = self.store.find_live_for_user_and_plan(reference.user_id, reference.plan_id)
        if not matches:
            return None
        if len(matches) > 1:
            # Ambiguous (e.g. a retried creation); the most recent row wins
            logger.warning(
                f"Multiple live subscriptions match user_id={reference.user_id}, plan_id={reference.plan_id}: "
                f"{[match.id for match in matches]}; using {matches[0].id}"
            )
        subscription = matches[0]
        if preapproval_id and subscription.mercadopago_subscription_id != str(preapproval_id):
            logger.info(
                f"Backfilling provider id: subscription_id={subscription.id}, "
                f"old={subscription.mercadopago_subscription_id}, new={preapproval_id}"
            )
            self.store.update_subscription(subscription, mercadopago_subscription_id=str(preapproval_id))
        return subscription


def _data_id(notification: Optional[Dict[str, Any]]) -> Optional[str]:
    data = (notification or {}).get("data") or {}
    value = data.get("id") if isinstance(data, dict) else None
    return str(value) if value not in (None, "") else None


def _object(value) -> Dict[str, Any]:
    """Nested provider field as a dict; non-object values read as empty."""
    return value if isinstance(value, dict) else {}


def _payment_reference(payment: Dict[str, Any]) -> Optional[str]:
    metadata = _object(payment.get("metadata"))
    return payment.get("external_reference") or metadata.get("external_reference")


def _payment_preapproval_id(payment: Dict[str, Any]) -> Optional[str]:
    metadata = _object(payment.get("metadata"))
    point_of_interaction = _object(payment.get("point_of_interaction"))
    transaction_data = _object(point_of_interaction.get("transaction_data"))
    value = (
        metadata.get("preapproval_id")
        or payment.get("preapproval_id")
        or payment.get("subscription_id")
        or transaction_data.get("subscription_id")
    )
    return str(value) if value else None


def _payment_method_type(payment: Dict[str, Any]) -> Optional[str]:
    return _object(payment.get("payment_method")).get("type") or payment.get("payment_type_id")


def _payment_snapshot(payment: Dict[str, Any]) -> Dict[str, Any]:
    keys = (
        "id", "status", "status_detail", "operation_type", "transaction_amount", "currency_id",
        "date_created", "date_approved", "payment_method_id", "payment_type_id", "external_reference",
    )
    return {key: payment.get(key) for key in keys if payment.get(key) is not None}
