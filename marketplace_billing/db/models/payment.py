"""
Recurring charge ledger.
"""
import enum

from sqlalchemy import Column, String, Float, DateTime, ForeignKey, JSON
from sqlalchemy.sql import func
from marketplace_billing.db.base import Base
from marketplace_billing.db.models.user import generate_id


class PaymentStatus(str, enum.Enum):
    """Local payment vocabulary."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class Payment(Base):
    """
    Payment model.

    Rows are append-only: one per MercadoPago payment id (unique constraint),
    only ``processed_at`` is written after insertion. Authorization events never
    create a row; only ``recurring_payment`` charges do.
    """
    __tablename__ = "payments"

    id = Column(String(32), primary_key=True, default=generate_id)
    subscription_id = Column(String(32), ForeignKey("subscriptions.id"), nullable=True, index=True)
    user_id = Column(String(32), nullable=True, index=True)

    mercadopago_payment_id = Column(String, nullable=False, unique=True, index=True)
    mercadopago_subscription_id = Column(String, nullable=True)

    amount = Column(Float, nullable=True)
    currency = Column(String(3), nullable=True)
    status = Column(String, nullable=False, default=PaymentStatus.PENDING.value)
    status_detail = Column(String, nullable=True)
    operation_type = Column(String, nullable=True)
    payment_method = Column(String, nullable=True)
    external_reference = Column(String, nullable=True, index=True)
    description = Column(String, nullable=True)
    provider_data = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Payment(id={self.id}, mercadopago_payment_id={self.mercadopago_payment_id}, status='{self.status}')>"
