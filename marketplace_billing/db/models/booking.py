from sqlalchemy import Column, String, Float, DateTime, ForeignKey, JSON
from sqlalchemy.sql import func
from marketplace_billing.db.base import Base
from marketplace_billing.db.models.user import generate_id


class Booking(Base):
    """Booking paid through a one-off MercadoPago checkout."""
    __tablename__ = "bookings"

    id = Column(String(32), primary_key=True, default=generate_id)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=True, index=True)
    post_id = Column(String(32), nullable=True, index=True)
    status = Column(String, nullable=False, default="pending")  # pending | confirmed | paid | cancelled
    total_amount = Column(Float, nullable=True)
    payment_info = Column(JSON, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
