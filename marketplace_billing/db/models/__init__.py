"""
Database models module.

This module imports all database models to ensure they are registered with SQLAlchemy's Base.metadata
before table creation.

All models must be imported here to be included in database migrations and table creation.
"""
from marketplace_billing.db.models.user import User
from marketplace_billing.db.models.plan import Plan
from marketplace_billing.db.models.subscription import Subscription, SubscriptionStatus
from marketplace_billing.db.models.payment import Payment, PaymentStatus
from marketplace_billing.db.models.booking import Booking
from marketplace_billing.db.models.mercadopago_account import MercadoPagoAccount
from marketplace_billing.db.models.upgrade_attempt import UpgradeAttempt, UpgradePhase, UpgradeOutcome

# Explicitly export all models for clarity
__all__ = [
    "User",
    "Plan",
    "Subscription",
    "SubscriptionStatus",
    "Payment",
    "PaymentStatus",
    "Booking",
    "MercadoPagoAccount",
    "UpgradeAttempt",
    "UpgradePhase",
    "UpgradeOutcome",
]
