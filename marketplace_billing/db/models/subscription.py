"""
Local projection of a MercadoPago preapproval (recurring subscription).
"""
import enum

from sqlalchemy import Column, String, Float, DateTime, ForeignKey, JSON, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from marketplace_billing.db.base import Base
from marketplace_billing.db.models.user import generate_id


class SubscriptionStatus(str, enum.Enum):
    """Local subscription lifecycle states."""
    PENDING = "pending"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    PAUSED = "paused"
    EXPIRED = "expired"


class Subscription(Base):
    """
    Subscription model.

    ``status`` is only changed through ``services.subscription_state``; the
    creation flow always inserts rows as ``pending``.
    """
    __tablename__ = "subscriptions"

    id = Column(String(32), primary_key=True, default=generate_id)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    plan_id = Column(String(32), ForeignKey("plans.id"), nullable=False, index=True)
    plan_name = Column(String, nullable=True)  # denormalized for display

    status = Column(String, nullable=False, default=SubscriptionStatus.PENDING.value, index=True)

    # Primary correlation key; may be backfilled by the reconciliation engine
    mercadopago_subscription_id = Column(String, nullable=True, unique=True, index=True)
    # Payer email used at MercadoPago, kept for later upgrades
    subscription_email = Column(String, nullable=True)

    amount = Column(Float, nullable=False)
    currency = Column(String(3), nullable=False, default="ARS")
    billing_cycle = Column(String, nullable=False, default="monthly")
    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)

    # initPoint, externalReference, backUrl, cardId, cardTokenId, mercadoPagoStatus, lastStatusUpdate
    details = Column("metadata", JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    created_by = Column(String, nullable=False, default="system")

    # Relationships
    user = relationship("User", backref="subscriptions")
    plan = relationship("Plan")

    __table_args__ = (
        Index("idx_subscription_user_status", "user_id", "status"),
    )

    @property
    def external_reference(self):
        return (self.details or {}).get("externalReference")

    def __repr__(self):
        return f"<Subscription(id={self.id}, user_id={self.user_id}, plan_id={self.plan_id}, status='{self.status}')>"
