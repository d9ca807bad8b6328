from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, JSON
from sqlalchemy.sql import func
from marketplace_billing.db.base import Base
from marketplace_billing.db.models.user import generate_id


class Plan(Base):
    """
    Publisher subscription plan.

    Pricing fields are frozen once an active subscription references the plan;
    only name/description/features may change afterwards.
    """
    __tablename__ = "plans"

    id = Column(String(32), primary_key=True, default=generate_id)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    price = Column(Float, nullable=False)
    currency = Column(String(3), nullable=False, default="ARS")
    billing_cycle = Column(String, nullable=False, default="monthly")  # monthly | yearly

    # Filled in once the plan has been synced to MercadoPago as a preapproval_plan
    mercadopago_plan_id = Column(String, nullable=True, index=True)

    max_posts = Column(Integer, nullable=False, default=0)
    max_bookings = Column(Integer, nullable=False, default=0)
    features = Column(JSON, nullable=True, default=list)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def is_synced(self) -> bool:
        return bool(self.mercadopago_plan_id)

    def __repr__(self):
        return f"<Plan(id={self.id}, name='{self.name}', price={self.price} {self.currency})>"
