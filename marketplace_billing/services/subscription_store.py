"""
Persistence facade over subscriptions, payments and bookings.

The store offers single-row reads and writes only; it never enforces business
invariants such as "one live subscription per user" (the creation flow and the
reconciliation engine do).
"""
import logging
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace_billing.db.models.user import User
from marketplace_billing.db.models.plan import Plan
from marketplace_billing.db.models.subscription import Subscription, SubscriptionStatus
from marketplace_billing.db.models.payment import Payment
from marketplace_billing.db.models.booking import Booking
from marketplace_billing.db.models.upgrade_attempt import UpgradeAttempt

logger = logging.getLogger(__name__)

LIVE_STATUSES = (SubscriptionStatus.PENDING.value, SubscriptionStatus.ACTIVE.value)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionStore:
    """Subscription/payment persistence bound to one request-scoped session."""

    def __init__(self, db: Session):
        self.db = db

    # ---- users & plans -----------------------------------------------------

    def get_user(self, user_id: str) -> Optional[User]:
        return self.db.get(User, user_id)

    def get_plan(self, plan_id: str) -> Optional[Plan]:
        return self.db.get(Plan, plan_id)

    def list_plans(self, active_only: bool = False) -> List[Plan]:
        query = self.db.query(Plan)
        if active_only:
            query = query.filter(Plan.is_active.is_(True))
        return query.order_by(Plan.created_at.asc()).all()

    def update_plan(self, plan: Plan, **fields) -> Plan:
        for key, value in fields.items():
            setattr(plan, key, value)
        self.db.commit()
        self.db.refresh(plan)
        return plan

    # ---- subscriptions -----------------------------------------------------

    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        return self.db.get(Subscription, subscription_id)

    def get_by_provider_id(self, mercadopago_subscription_id: str) -> Optional[Subscription]:
        if not mercadopago_subscription_id:
            return None
        return self.db.query(Subscription).filter(
            Subscription.mercadopago_subscription_id == str(mercadopago_subscription_id)
        ).first()

    def list_for_user(self, user_id: str) -> List[Subscription]:
        return self.db.query(Subscription).filter(
            Subscription.user_id == user_id
        ).order_by(Subscription.created_at.asc()).all()

    def find_live_for_user(self, user_id: str) -> Optional[Subscription]:
        """Most recent pending/active subscription of a user."""
        return self.db.query(Subscription).filter(
            Subscription.user_id == user_id,
            Subscription.status.in_(LIVE_STATUSES),
        ).order_by(Subscription.created_at.desc()).first()

    def find_live_for_user_and_plan(self, user_id: str, plan_id: str) -> List[Subscription]:
        return self.db.query(Subscription).filter(
            Subscription.user_id == user_id,
            Subscription.plan_id == plan_id,
            Subscription.status.in_(LIVE_STATUSES),
        ).order_by(Subscription.created_at.desc()).all()

    def create_subscription(self, **fields) -> Subscription:
        fields.setdefault("status", SubscriptionStatus.PENDING.value)
        fields.setdefault("created_by", "system")
        subscription = Subscription(**fields)
        self.db.add(subscription)
        self.db.commit()
        self.db.refresh(subscription)
        logger.info(
            f"Subscription row created: id={subscription.id}, user_id={subscription.user_id}, "
            f"plan_id={subscription.plan_id}, status={subscription.status}"
        )
        return subscription

    def update_subscription(
        self,
        subscription: Subscription,
        metadata_patch: Optional[Dict[str, Any]] = None,
        **fields,
    ) -> Subscription:
        """Apply a patch; ``metadata_patch`` is merged into the existing metadata."""
        for key, value in fields.items():
            setattr(subscription, key, value)
        if metadata_patch:
            merged = dict(subscription.details or {})
            merged.update(metadata_patch)
            subscription.details = merged
        self.db.commit()
        self.db.refresh(subscription)
        return subscription

    # ---- payments ----------------------------------------------------------

    def get_payment_by_provider_id(self, mercadopago_payment_id) -> Optional[Payment]:
        return self.db.query(Payment).filter(
            Payment.mercadopago_payment_id == str(mercadopago_payment_id)
        ).first()

    def insert_payment_if_absent(self, **fields) -> Tuple[Payment, bool]:
        """
        Insert a payment row unless one already exists for the provider id.

        Returns:
            Tuple of (payment, created). ``created`` is False for duplicates,
            including a concurrent insert that lost the unique-constraint race.
        """
        provider_id = str(fields["mercadopago_payment_id"])
        fields["mercadopago_payment_id"] = provider_id

        existing = self.get_payment_by_provider_id(provider_id)
        if existing:
            return existing, False

        payment = Payment(**fields)
        self.db.add(payment)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info(f"Payment {provider_id} inserted concurrently, treating as duplicate")
            return self.get_payment_by_provider_id(provider_id), False

        self.db.refresh(payment)
        return payment, True

    def mark_payment_processed(self, payment: Payment) -> Payment:
        if payment.processed_at is None:
            payment.processed_at = utcnow()
            self.db.commit()
            self.db.refresh(payment)
        return payment

    # ---- bookings ----------------------------------------------------------

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        return self.db.get(Booking, booking_id)

    def mark_booking_paid(self, booking: Booking, payment_info: Dict[str, Any]) -> Booking:
        booking.status = "paid"
        booking.payment_info = payment_info
        booking.paid_at = utcnow()
        self.db.commit()
        self.db.refresh(booking)
        return booking

    # ---- upgrade attempts --------------------------------------------------

    def create_upgrade_attempt(self, **fields) -> UpgradeAttempt:
        attempt = UpgradeAttempt(**fields)
        self.db.add(attempt)
        self.db.commit()
        self.db.refresh(attempt)
        return attempt

    def get_upgrade_attempt(self, attempt_id: str) -> Optional[UpgradeAttempt]:
        return self.db.get(UpgradeAttempt, attempt_id)

    def find_open_upgrade_attempt(self, old_subscription_id: str, new_subscription_id: str) -> Optional[UpgradeAttempt]:
        return self.db.query(UpgradeAttempt).filter(
            UpgradeAttempt.old_subscription_id == old_subscription_id,
            UpgradeAttempt.new_subscription_id == new_subscription_id,
        ).order_by(UpgradeAttempt.created_at.desc()).first()

    def update_upgrade_attempt(self, attempt: UpgradeAttempt, **fields) -> UpgradeAttempt:
        for key, value in fields.items():
            setattr(attempt, key, value)
        self.db.commit()
        self.db.refresh(attempt)
        return attempt

    def list_upgrade_attempts(self, user_id: Optional[str] = None, outcome: Optional[str] = None) -> List[UpgradeAttempt]:
        query = self.db.query(UpgradeAttempt)
        if user_id:
            query = query.filter(UpgradeAttempt.user_id == user_id)
        if outcome:
            query = query.filter(UpgradeAttempt.outcome == outcome)
        return query.order_by(UpgradeAttempt.created_at.desc()).all()
