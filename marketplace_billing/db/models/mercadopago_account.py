from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey
from sqlalchemy.sql import func
from marketplace_billing.db.base import Base
from marketplace_billing.db.models.user import generate_id


class MercadoPagoAccount(Base):
    """
    MercadoPago account connected by a publisher (OAuth).

    ``access_token`` is the publisher-scoped credential used to read booking
    payments that were issued on the publisher's behalf.
    """
    __tablename__ = "mercadopago_accounts"

    id = Column(String(32), primary_key=True, default=generate_id)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    mercadopago_user_id = Column(String, nullable=False, index=True)
    access_token = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
